"""
Store (tenant) resolution, registry and settings.

The active store of a storefront request comes from the ?shop= slug, then
from the hostname subdomain, then falls back to the default store. Admin
requests use the store carried by the admin token instead.
"""

from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException, Query, Request

from config import Settings, get_settings
from database import ResilientStore, get_store

logger = logging.getLogger(__name__)

BASIC_FEATURES = {"wishlist"}
FEATURES = {"blog", "coupons", "wishlist", "metrics_pro"}

DEFAULT_STORE = {
    "name": "Lojinha das Graças",
    "slug": "lojinhas-das-gracas",
    "status": "active",
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "store_name": "Lojinha das Graças",
    "whatsapp_number": "5598984095956",
    "primary_color": "#D4AF37",
    "hero_title": "PAZ E DEVOÇÃO",
    "hero_subtitle": "Artigos religiosos selecionados com amor para fortalecer sua fé.",
    "hero_button_text": "VER OFERTAS",
    "hero_image_url": "https://images.unsplash.com/photo-1543783207-c0831a0b367c?auto=format&fit=crop&q=80&w=2000",
    "hero_banners": [],
    "pix_key": "5598984095956",
    "instagram_url": "https://instagram.com/lojinhadasgracas",
    "infinitepay_handle": "lojinhadasgracas",
    "about_text": "Levando a paz de Cristo até você.",
    "privacy_policy": "Seus dados estão protegidos conosco.",
    "monthly_revenue_goal": 5000,
    "plan": "pro",
    "status": "active",
}

NEW_STORE_SETTINGS: dict[str, Any] = {
    "store_name": "Nova Loja",
    "whatsapp_number": "",
    "primary_color": "#D4AF37",
    "hero_title": "Bem-vindo",
    "hero_subtitle": "Configure sua nova loja no painel administrativo.",
    "hero_button_text": "Ver Produtos",
    "hero_banners": [],
    "pix_key": "",
    "instagram_url": "",
    "infinitepay_handle": "",
    "about_text": "",
    "privacy_policy": "",
    "plan": "basic",
    "status": "active",
}


# ============ Resolution ============

def find_store_by_slug(store: ResilientStore, slug: str) -> Optional[dict[str, Any]]:
    found = store.get_documents("stores", {"slug": slug}, limit=1)
    return found[0] if found else None


def resolve_store_id(store: ResilientStore, settings: Settings, shop: Optional[str] = None, host: Optional[str] = None) -> str:
    default_slugs = set(settings.DEFAULT_STORE_SLUGS)

    if shop:
        if shop in default_slugs:
            return settings.DEFAULT_STORE_ID
        found = find_store_by_slug(store, shop)
        if found:
            return found["id"]
        logger.warning("Unknown shop slug %r, falling back to host detection", shop)

    host = (host or "").split(":")[0].lower()
    if any(slug in host for slug in default_slugs):
        return settings.DEFAULT_STORE_ID

    parts = host.split(".")
    if len(parts) >= 3 and parts[0] != "www" and "localhost" not in host and "127.0.0.1" not in host:
        found = find_store_by_slug(store, parts[0])
        if found:
            return found["id"]
        logger.warning("No store found for host %s", host)

    return settings.DEFAULT_STORE_ID


def current_store_id(
    request: Request,
    shop: Optional[str] = Query(None, description="Store slug override"),
    store: ResilientStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> str:
    return resolve_store_id(store, settings, shop=shop, host=request.url.hostname)


# ============ Ownership ============

def get_owned_document(store: ResilientStore, collection: str, doc_id: str, store_id: str) -> dict[str, Any]:
    doc = store.get_document(collection, doc_id, store_id=store_id)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Record not found in {collection}")
    if doc.get("store_id") != store_id:
        logger.warning("Store %s tried to touch %s/%s owned by %s", store_id, collection, doc_id, doc.get("store_id"))
        raise HTTPException(status_code=403, detail="Permission denied: record belongs to another store")
    return doc


# ============ Registry ============

def list_stores(store: ResilientStore) -> list[dict[str, Any]]:
    return sorted(store.get_documents("stores"), key=lambda s: s.get("name", ""))


def create_store(store: ResilientStore, data: dict[str, Any], store_id: Optional[str] = None) -> dict[str, Any]:
    if find_store_by_slug(store, data["slug"]):
        raise HTTPException(status_code=400, detail="Store slug already taken")
    created = store.create_document("stores", data, doc_id=store_id)
    logger.info("Store %s (%s) created", created["id"], data["slug"])
    return created


# ============ Settings ============

def get_store_settings(store: ResilientStore, store_id: str) -> dict[str, Any]:
    settings = get_settings()
    doc = store.get_document("store_settings", store_id, store_id=store_id)
    if doc is None:
        found = store.get_documents("store_settings", {"store_id": store_id}, limit=1)
        doc = found[0] if found else None
    if doc is not None:
        return doc
    template = DEFAULT_SETTINGS if store_id == settings.DEFAULT_STORE_ID else NEW_STORE_SETTINGS
    return {**template, "id": store_id, "store_id": store_id}


def update_store_settings(store: ResilientStore, store_id: str, patch: dict[str, Any]) -> dict[str, Any]:
    patch = {**patch, "store_id": store_id}
    existing = store.get_document("store_settings", store_id, store_id=store_id)
    if existing is None:
        base = get_store_settings(store, store_id)
        base.pop("id", None)
        return store.create_document("store_settings", {**base, **patch}, doc_id=store_id)
    store.update_document("store_settings", store_id, patch, store_id=store_id)
    return {**existing, **patch}


def has_feature(settings: dict[str, Any], feature: str) -> bool:
    if settings.get("plan", "basic") == "pro":
        return True
    return feature in BASIC_FEATURES


def require_feature(store: ResilientStore, store_id: str, feature: str) -> None:
    if not has_feature(get_store_settings(store, store_id), feature):
        raise HTTPException(status_code=402, detail=f"Feature '{feature}' requires the pro plan")
