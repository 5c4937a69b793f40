from datetime import datetime
from decimal import Decimal

from vendorflow.extensions import db


class Vendor(db.Model):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(160), nullable=False)
    username = db.Column(db.String(80), unique=True, index=True, nullable=True)
    email = db.Column(db.String(255), index=True, nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | approved | rejected | suspended
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Percentage of subtotal retained by the platform.
    commission = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))

    address1 = db.Column(db.String(255), nullable=True)
    address2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(80), nullable=True)
    state = db.Column(db.String(80), nullable=True)
    postcode = db.Column(db.String(16), nullable=True)
    country = db.Column(db.String(64), nullable=True, default="India")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def can_accept_orders(self) -> bool:
        return (self.status or "").strip().lower() == "approved" and bool(self.is_active)

    def commission_rate(self) -> Decimal:
        try:
            rate = Decimal(str(self.commission if self.commission is not None else 0))
        except Exception:
            rate = Decimal("0")
        if rate < 0:
            return Decimal("0")
        if rate > 100:
            return Decimal("100")
        return rate

    def address_dict(self) -> dict:
        return {
            "name": self.name or "",
            "phone": self.phone or "",
            "address1": self.address1 or "",
            "address2": self.address2 or "",
            "city": self.city or "",
            "state": self.state or "",
            "postcode": self.postcode or "",
            "country": self.country or "",
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name or "",
            "username": self.username or "",
            "email": self.email or "",
            "phone": self.phone or "",
            "status": self.status or "pending",
            "is_active": bool(self.is_active),
            "commission": float(self.commission_rate()),
            "address": self.address_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
