import json
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from vendorflow.extensions import db


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), index=True, nullable=True)

    password_hash = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    role = db.Column(db.String(32), nullable=False, default="customer")  # customer | vendor | admin
    # Set for vendor-linked users; several users may act for one vendor.
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    push_tokens_json = db.Column(db.Text, nullable=True)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    def push_tokens(self) -> list[str]:
        raw = (self.push_tokens_json or "").strip()
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except Exception:
            return []
        if not isinstance(parsed, list):
            return []
        return [str(t).strip() for t in parsed if str(t or "").strip()]

    def set_push_tokens(self, tokens) -> None:
        cleaned = []
        for t in tokens or []:
            t = str(t or "").strip()
            if t and t not in cleaned:
                cleaned.append(t)
        self.push_tokens_json = json.dumps(cleaned)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": getattr(self, "phone", None),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "role": self.role or "customer",
            "vendor_id": int(self.vendor_id) if self.vendor_id is not None else None,
            "is_active": bool(self.is_active),
        }
