from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from vendorflow.extensions import db
from vendorflow.models import Order, Vendor, VendorLedgerEntry
from vendorflow.services.errors import OrderValidationError
from vendorflow.services.payout_ledger import (
    IN_FLIGHT_STATUSES,
    OPEN_RETURN_STATUSES,
    SETTLED_STATUSES,
    RETURN_WINDOW,
    VendorLedgerSummary,
    summarize_vendor_ledger,
)
from vendorflow.utils.actors import parse_actor
from vendorflow.utils.events import log_event
from vendorflow.utils.money import quantize_money

LEDGER_STATUSES = IN_FLIGHT_STATUSES + OPEN_RETURN_STATUSES + SETTLED_STATUSES


def configured_return_window() -> timedelta:
    days = None
    if has_app_context():
        days = current_app.config.get("RETURN_WINDOW_DAYS")
    try:
        days = int(days) if days is not None else None
    except Exception:
        days = None
    if days is None or days < 0:
        return RETURN_WINDOW
    return timedelta(days=days)


def _entry_for(vendor_id: int) -> VendorLedgerEntry | None:
    return VendorLedgerEntry.query.filter_by(vendor_id=int(vendor_id)).first()


def vendor_ledger_summary(vendor: Vendor, *, now: datetime | None = None) -> VendorLedgerSummary:
    orders = (
        Order.query.filter(Order.vendor_id == int(vendor.id), Order.status.in_(LEDGER_STATUSES))
        .order_by(Order.id.asc())
        .all()
    )
    entry = _entry_for(int(vendor.id))
    return summarize_vendor_ledger(
        orders,
        vendor.commission_rate(),
        entry.paid if entry else Decimal("0"),
        now or datetime.utcnow(),
        vendor_id=int(vendor.id),
        return_window=configured_return_window(),
    )


def get_vendor_ledger(vendor: Vendor, *, include_rows: bool = False) -> dict:
    entry = _entry_for(int(vendor.id))
    out = vendor_ledger_summary(vendor).to_dict(include_rows=include_rows)
    out["vendor_name"] = vendor.name or ""
    out["notes"] = (entry.notes or "") if entry else ""
    out["updated_at"] = entry.updated_at.isoformat() if entry and entry.updated_at else None
    return out


def list_vendor_ledgers() -> list[dict]:
    vendors = Vendor.query.order_by(Vendor.id.asc()).all()
    return [get_vendor_ledger(v) for v in vendors]


def _parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw if raw is not None else 0))
    except (InvalidOperation, ValueError):
        raise OrderValidationError("amount must be a number")
    if not amount.is_finite():
        raise OrderValidationError("amount must be a number")
    if amount < 0:
        raise OrderValidationError("amount must be non-negative")
    return quantize_money(amount)


def record_vendor_payment(vendor: Vendor, amount, *, notes: str | None = None, actor=None) -> VendorLedgerEntry:
    """Add `amount` to the vendor's recorded payouts; `paid` never decreases."""
    if vendor is None:
        raise OrderValidationError("vendor not found")
    delta = _parse_amount(amount)
    _actor_type, actor_id = parse_actor(actor)
    now = datetime.utcnow()

    entry = _entry_for(int(vendor.id))
    if entry is None:
        entry = VendorLedgerEntry(vendor_id=int(vendor.id), paid=Decimal("0"))
        try:
            with db.session.begin_nested():
                db.session.add(entry)
                db.session.flush()
        except IntegrityError:
            entry = _entry_for(int(vendor.id))

    # Increment in SQL so concurrent admin writes both land.
    VendorLedgerEntry.query.filter_by(id=int(entry.id)).update(
        {
            "paid": VendorLedgerEntry.paid + delta,
            "notes": notes if isinstance(notes, str) else (entry.notes or ""),
            "updated_at": now,
            "updated_by": actor_id,
        },
        synchronize_session=False,
    )
    log_event(
        "vendor_payment_recorded",
        actor=actor,
        vendor_id=int(vendor.id),
        metadata={"amount": str(delta), "notes": notes or ""},
    )
    db.session.commit()
    db.session.refresh(entry)
    return entry
