from datetime import datetime
from decimal import Decimal

from vendorflow.extensions import db


class VendorLedgerEntry(db.Model):
    """Admin-authored payout record for one vendor.

    `paid` only ever grows; it is never derived from orders.
    """

    __tablename__ = "vendor_ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, unique=True, index=True)
    paid = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    notes = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_by = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "vendor_id": int(self.vendor_id),
            "paid": float(self.paid or 0),
            "notes": self.notes or "",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": int(self.updated_by) if self.updated_by is not None else None,
        }
