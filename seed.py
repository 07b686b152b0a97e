"""
Bootstrap the default store.

    python seed.py
    python seed.py --admin-email dono@loja.com --admin-password segredo --superadmin

Safe to run repeatedly: existing records are left alone.
"""

import argparse
import logging
from typing import Optional

from auth import find_admin, register_admin
from config import get_settings
from database import ResilientStore, get_store
from tenancy import DEFAULT_SETTINGS, DEFAULT_STORE, update_store_settings

logger = logging.getLogger("seed")


def seed_default_store(store: ResilientStore, store_id: str) -> dict:
    existing = store.get_document("stores", store_id)
    if existing is not None:
        logger.info("Default store %s already exists", store_id)
    else:
        existing = store.create_document("stores", DEFAULT_STORE, doc_id=store_id)
        logger.info("Created default store %s", store_id)

    if store.get_document("store_settings", store_id, store_id=store_id) is None:
        update_store_settings(store, store_id, DEFAULT_SETTINGS)
        logger.info("Created settings for store %s", store_id)
    return existing


def seed_admin(store: ResilientStore, store_id: str, email: str, password: str, superadmin: bool = False) -> Optional[dict]:
    if find_admin(store, store_id, email):
        logger.info("Admin %s already exists", email)
        return None
    admin = register_admin(store, store_id, email, password, role="superadmin" if superadmin else "owner")
    logger.info("Created %s %s", admin["role"], email)
    return admin


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed the default store")
    parser.add_argument("--admin-email", help="Create an admin for the default store")
    parser.add_argument("--admin-password", help="Password for --admin-email")
    parser.add_argument("--superadmin", action="store_true", help="Give the admin the superadmin role")
    args = parser.parse_args(argv)

    if args.admin_email and not args.admin_password:
        parser.error("--admin-password is required with --admin-email")

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    store = get_store()
    seed_default_store(store, settings.DEFAULT_STORE_ID)
    if args.admin_email:
        seed_admin(store, settings.DEFAULT_STORE_ID, args.admin_email, args.admin_password, args.superadmin)


if __name__ == "__main__":
    main()
