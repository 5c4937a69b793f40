from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from vendorflow.utils.money import as_float, quantize_money, to_decimal

GATEWAY_RATE = Decimal("0.02")
GATEWAY_METHODS = ("online", "wallet")
RETURN_WINDOW = timedelta(days=3)

# A denied return leaves the goods with the customer; the order pays out like a delivered one.
SETTLED_STATUSES = ("delivered", "return_rejected")
IN_FLIGHT_STATUSES = ("processing", "shipped")
OPEN_RETURN_STATUSES = ("return_requested", "return_accepted")


@dataclass(frozen=True)
class OrderPayout:
    payout_before_gateway: Decimal
    gateway_charge: Decimal
    net_payout: Decimal

    def to_dict(self) -> dict:
        return {
            "payout_before_gateway": as_float(self.payout_before_gateway),
            "gateway_charge": as_float(self.gateway_charge),
            "net_payout": as_float(self.net_payout),
        }


@dataclass
class VendorLedgerSummary:
    vendor_id: int | None
    commission: Decimal
    earned: Decimal = Decimal("0.00")
    pending: Decimal = Decimal("0.00")
    paid: Decimal = Decimal("0.00")
    earned_orders: int = 0
    pending_orders: int = 0
    product_total: Decimal = Decimal("0.00")
    gateway_charges: Decimal = Decimal("0.00")
    rows: list = field(default_factory=list)

    @property
    def balance(self) -> Decimal:
        return self.earned - self.paid

    def to_dict(self, *, include_rows: bool = False) -> dict:
        out = {
            "vendor_id": self.vendor_id,
            "commission": float(self.commission),
            "earned": as_float(self.earned),
            "pending": as_float(self.pending),
            "paid": as_float(self.paid),
            "balance": as_float(self.balance),
            "earned_orders": self.earned_orders,
            "pending_orders": self.pending_orders,
            "product_total": as_float(self.product_total),
            "gateway_charges": as_float(self.gateway_charges),
        }
        if include_rows:
            out["orders"] = list(self.rows)
        return out


def _clamp_commission(commission_pct) -> Decimal:
    rate = to_decimal(commission_pct)
    if rate < 0:
        return Decimal("0")
    if rate > 100:
        return Decimal("100")
    return rate


def compute_order_payout(
    subtotal,
    commission_pct,
    payment_method: str | None,
    *,
    gateway_rate: Decimal = GATEWAY_RATE,
) -> OrderPayout:
    """Vendor payout for one order.

    payout_before_gateway = subtotal * (1 - commission/100)
    gateway_charge        = payout_before_gateway * gateway_rate for online/wallet, else 0
    net_payout            = payout_before_gateway - gateway_charge
    """
    commission = _clamp_commission(commission_pct)
    before = quantize_money(to_decimal(subtotal) * (Decimal("1") - commission / Decimal("100")))
    method = (payment_method or "").strip().lower()
    gateway = quantize_money(before * to_decimal(gateway_rate)) if method in GATEWAY_METHODS else Decimal("0.00")
    return OrderPayout(payout_before_gateway=before, gateway_charge=gateway, net_payout=before - gateway)


def return_deadline(order, *, return_window: timedelta = RETURN_WINDOW) -> datetime | None:
    # Older rows may lack delivered_at; the last update is the best delivery estimate.
    delivered = getattr(order, "delivered_at", None) or getattr(order, "updated_at", None)
    if delivered is None:
        return None
    return delivered + return_window


def payout_bucket(order, now: datetime, *, return_window: timedelta = RETURN_WINDOW) -> str | None:
    """Classify an order as "earned", "pending", or None (no payout)."""
    if getattr(order, "vendor_id", None) is None:
        return None
    status = (getattr(order, "status", None) or "").strip().lower()
    if status in IN_FLIGHT_STATUSES or status in OPEN_RETURN_STATUSES:
        return "pending"
    if status not in SETTLED_STATUSES:
        return None
    return_type = (getattr(order, "return_type", None) or "").strip().lower()
    if return_type and return_type != "denied":
        return "pending"
    deadline = return_deadline(order, return_window=return_window)
    if deadline is None or not now > deadline:
        return "pending"
    return "earned"


def summarize_vendor_ledger(
    orders,
    commission_pct,
    paid,
    now: datetime,
    *,
    vendor_id: int | None = None,
    gateway_rate: Decimal = GATEWAY_RATE,
    return_window: timedelta = RETURN_WINDOW,
) -> VendorLedgerSummary:
    """Fresh earned/pending/paid/balance aggregate for one vendor's orders.

    Reads only; callers pass the orders and the admin-recorded `paid` total.
    """
    summary = VendorLedgerSummary(
        vendor_id=vendor_id,
        commission=_clamp_commission(commission_pct),
        paid=quantize_money(paid),
    )
    for order in orders or ():
        bucket = payout_bucket(order, now, return_window=return_window)
        if bucket is None:
            continue
        payout = compute_order_payout(order.subtotal, summary.commission, order.payment_method, gateway_rate=gateway_rate)
        if bucket == "earned":
            summary.earned += payout.net_payout
            summary.earned_orders += 1
            summary.product_total += quantize_money(order.subtotal)
            summary.gateway_charges += payout.gateway_charge
        else:
            summary.pending += payout.net_payout
            summary.pending_orders += 1
        deadline = return_deadline(order, return_window=return_window)
        row = {
            "order_id": int(order.id) if getattr(order, "id", None) is not None else None,
            "order_number": getattr(order, "order_number", "") or "",
            "status": order.status,
            "bucket": bucket,
            "subtotal": as_float(order.subtotal),
            "return_deadline": deadline.isoformat() if deadline and order.status in SETTLED_STATUSES else None,
        }
        row.update(payout.to_dict())
        summary.rows.append(row)
    return summary
