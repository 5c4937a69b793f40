from __future__ import annotations

from flask import g, request

from vendorflow.extensions import db
from vendorflow.models import User, Vendor
from vendorflow.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    payload = decode_token(token) if token else None
    sub = payload.get("sub") if isinstance(payload, dict) else None
    try:
        uid = int(sub) if sub is not None else None
    except Exception:
        uid = None
    if not uid:
        return None
    try:
        user = db.session.get(User, uid)
    except Exception:
        db.session.rollback()
        return None
    if user is None or not bool(user.is_active):
        return None
    g.auth_user_id = int(user.id)
    g.auth_role = role_of(user)
    return user


def role_of(user: User | None) -> str:
    if not user:
        return "guest"
    return (getattr(user, "role", None) or "customer").strip().lower()


def is_admin(user: User | None) -> bool:
    return role_of(user) == "admin"


def linked_vendor(user: User | None) -> Vendor | None:
    if role_of(user) != "vendor" or not getattr(user, "vendor_id", None):
        return None
    return db.session.get(Vendor, int(user.vendor_id))
