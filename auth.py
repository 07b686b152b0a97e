from __future__ import annotations
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from config import Settings, get_settings
from database import ResilientStore
from schemas import AdminUser

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/login", auto_error=False)


class AdminPrincipal(BaseModel):
    id: str
    email: str
    store_id: str
    role: str


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


def create_access_token(admin: dict[str, Any], settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": admin["id"],
        "email": admin["email"],
        "store_id": admin["store_id"],
        "role": admin.get("role", "staff"),
        "exp": expire,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> AdminPrincipal:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    if not payload.get("sub") or not payload.get("store_id"):
        raise credentials_exception
    return AdminPrincipal(id=payload["sub"], email=payload.get("email", ""), store_id=payload["store_id"], role=payload.get("role", "staff"))


def get_current_admin(token: str = Depends(oauth2_scheme), settings: Settings = Depends(get_settings)) -> AdminPrincipal:
    return decode_token(token, settings)


def get_optional_admin(token: Optional[str] = Depends(optional_oauth2_scheme), settings: Settings = Depends(get_settings)) -> Optional[AdminPrincipal]:
    return decode_token(token, settings) if token else None


def require_superadmin(admin: AdminPrincipal = Depends(get_current_admin)) -> AdminPrincipal:
    if admin.role != "superadmin":
        raise HTTPException(status_code=403, detail="Super admin only")
    return admin


def active_store_id(admin: AdminPrincipal = Depends(get_current_admin), x_store_id: Optional[str] = Header(None)) -> str:
    """The admin's own store; super admins may manage another one via X-Store-Id."""
    if x_store_id and x_store_id != admin.store_id:
        if admin.role != "superadmin":
            raise HTTPException(status_code=403, detail="Cannot manage another store")
        return x_store_id
    return admin.store_id


def find_admin(store: ResilientStore, store_id: str, email: str) -> Optional[dict[str, Any]]:
    found = store.get_documents("admins", {"store_id": store_id, "email": email.lower()}, limit=1)
    return found[0] if found else None


def register_admin(store: ResilientStore, store_id: str, email: str, password: str, role: str = "owner") -> dict[str, Any]:
    if find_admin(store, store_id, email):
        raise HTTPException(status_code=400, detail="Admin already exists")
    doc = AdminUser(store_id=store_id, email=email.lower(), password_hash=hash_password(password), role=role)
    created = store.create_document("admins", doc.model_dump())
    created.pop("password_hash", None)
    return created


def authenticate(store: ResilientStore, store_id: str, email: str, password: str) -> Optional[dict[str, Any]]:
    admin = find_admin(store, store_id, email)
    if not admin or admin.get("password_hash") != hash_password(password):
        return None
    return admin
