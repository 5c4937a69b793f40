from __future__ import annotations

import itertools
import json
import secrets
import time
from datetime import datetime
from decimal import Decimal

from sqlalchemy import event

from vendorflow.extensions import db
from vendorflow.utils.money import quantize_money


_ORDER_SEQ = itertools.count(1)


def _new_order_number() -> str:
    return f"ORD-{int(time.time())}-{next(_ORDER_SEQ)}-{secrets.token_hex(2).upper()}"


def _load_json(raw, fallback):
    if not raw:
        return fallback
    try:
        parsed = json.loads(raw)
    except Exception:
        return fallback
    return parsed if isinstance(parsed, type(fallback)) else fallback


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(48), unique=True, index=True, nullable=False, default=_new_order_number)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    assignment_mode = db.Column(db.String(32), nullable=True)  # assigned-by-admin | accepted-by-vendor

    shipping_address_json = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    cgst = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    sgst = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    igst = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    shipping = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    payment_method = db.Column(db.String(16), nullable=False, default="cod")  # cod | online | wallet
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | paid | failed | refunded
    payment_gateway = db.Column(db.String(32), nullable=True)
    payment_transaction_id = db.Column(db.String(120), unique=True, nullable=True)
    payment_meta_json = db.Column(db.Text, nullable=True)

    awb_number = db.Column(db.String(32), nullable=True, index=True)
    return_awb_number = db.Column(db.String(32), nullable=True, index=True)
    dtdc_status = db.Column(db.String(24), nullable=True)
    return_dtdc_status = db.Column(db.String(24), nullable=True)
    dtdc_tracking_json = db.Column(db.Text, nullable=True)
    tracking_last_updated = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    return_type = db.Column(db.String(16), nullable=True)  # requested | accepted | denied | completed
    return_reason = db.Column(db.Text, nullable=True)
    return_attachments_json = db.Column(db.Text, nullable=True)
    return_requested_at = db.Column(db.DateTime, nullable=True)
    return_reviewed_at = db.Column(db.DateTime, nullable=True)
    return_reviewed_by = db.Column(db.Integer, nullable=True)
    return_admin_notes = db.Column(db.Text, nullable=True)
    return_refund_status = db.Column(db.String(16), nullable=True)

    refund_status = db.Column(db.String(16), nullable=True, index=True)  # pending | processing | completed | failed
    refund_transaction_id = db.Column(db.String(120), nullable=True)

    invoice_number = db.Column(db.String(48), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def recompute_total(self) -> Decimal:
        cgst = quantize_money(self.cgst)
        sgst = quantize_money(self.sgst)
        igst = quantize_money(self.igst)
        if igst > 0 and (cgst > 0 or sgst > 0):
            raise ValueError("igst is exclusive with cgst/sgst")
        self.total = quantize_money(self.subtotal) + cgst + sgst + igst + quantize_money(self.shipping)
        return self.total

    def shipping_address(self) -> dict:
        return _load_json(self.shipping_address_json, {})

    def payment_meta(self) -> dict:
        return _load_json(self.payment_meta_json, {})

    def payment_meta_with(self, entry: dict | None = None, **fields) -> str:
        """Return the serialized payment meta with `entry` appended to its event log.

        Used to build the value for conditioned updates, so the caller never
        writes a partial document.
        """
        meta = self.payment_meta()
        events = meta.get("events") if isinstance(meta.get("events"), list) else []
        if entry:
            stamped = dict(entry)
            stamped.setdefault("at", datetime.utcnow().isoformat())
            events.append(stamped)
        meta["events"] = events
        meta.update(fields)
        return json.dumps(meta, separators=(",", ":"), default=str)

    def payment_reference(self) -> str:
        meta = self.payment_meta()
        ref = (meta.get("gateway_payment_id") or meta.get("razorpay_payment_id") or self.payment_transaction_id or "")
        return str(ref).strip()

    def tracking_data(self) -> dict:
        return _load_json(self.dtdc_tracking_json, {})

    def return_attachments(self) -> list:
        return _load_json(self.return_attachments_json, [])

    def return_request_dict(self) -> dict | None:
        if not self.return_type:
            return None
        return {
            "type": self.return_type,
            "reason": self.return_reason or "",
            "attachments": self.return_attachments(),
            "requested_at": self.return_requested_at.isoformat() if self.return_requested_at else None,
            "reviewed_at": self.return_reviewed_at.isoformat() if self.return_reviewed_at else None,
            "reviewed_by": self.return_reviewed_by,
            "admin_notes": self.return_admin_notes or "",
            "refund_status": self.return_refund_status,
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_number": self.order_number or "",
            "customer_id": int(self.customer_id),
            "vendor_id": int(self.vendor_id) if self.vendor_id is not None else None,
            "assignment_mode": self.assignment_mode,
            "items": [i.to_dict() for i in (self.items or [])],
            "shipping_address": self.shipping_address(),
            "subtotal": float(quantize_money(self.subtotal)),
            "cgst": float(quantize_money(self.cgst)),
            "sgst": float(quantize_money(self.sgst)),
            "igst": float(quantize_money(self.igst)),
            "shipping": float(quantize_money(self.shipping)),
            "total": float(quantize_money(self.total)),
            "status": self.status or "pending",
            "payment_method": self.payment_method or "cod",
            "payment_status": self.payment_status or "pending",
            "payment_gateway": self.payment_gateway or "",
            "payment_transaction_id": self.payment_transaction_id or "",
            "awb_number": self.awb_number,
            "return_awb_number": self.return_awb_number,
            "dtdc_status": self.dtdc_status,
            "return_dtdc_status": self.return_dtdc_status,
            "tracking_last_updated": self.tracking_last_updated.isoformat() if self.tracking_last_updated else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "return_request": self.return_request_dict(),
            "refund_status": self.refund_status,
            "refund_transaction_id": self.refund_transaction_id or "",
            "invoice_number": self.invoice_number or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False, default="")
    brand = db.Column(db.String(120), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    image = db.Column(db.String(1024), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id) if self.id is not None else None,
            "product_id": self.product_id,
            "name": self.name or "",
            "brand": self.brand or "",
            "quantity": int(self.quantity or 0),
            "price": float(quantize_money(self.price)),
            "image": self.image or "",
        }


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _recompute_order_total(mapper, connection, target: Order) -> None:
    target.recompute_total()
