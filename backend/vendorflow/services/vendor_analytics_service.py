from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from vendorflow.models import Order, Vendor, VendorLedgerEntry
from vendorflow.services.errors import OrderValidationError
from vendorflow.services.order_state_service import OrderStatus
from vendorflow.services.payout_ledger import (
    SETTLED_STATUSES,
    compute_order_payout,
    payout_bucket,
    summarize_vendor_ledger,
)
from vendorflow.services.vendor_ledger_service import configured_return_window
from vendorflow.utils.money import as_float, quantize_money

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}

CATEGORIES = (
    "processing",
    "shipped",
    "delivered_return_open",
    "delivered_return_over",
    "cancelled",
    "return_accepted",
)


def period_start(period: str | None, now: datetime) -> datetime | None:
    """Start of a reporting window; "all" has none."""
    key = (period or "").strip().lower()
    if key == "all":
        return None
    if key not in PERIOD_DAYS:
        raise OrderValidationError(f"period must be one of: all, {', '.join(PERIOD_DAYS)}")
    return now - timedelta(days=PERIOD_DAYS[key])


def _category(order: Order, now: datetime, return_window: timedelta) -> str | None:
    status = (order.status or "").strip().lower()
    if status == OrderStatus.CANCELLED:
        return "cancelled"
    if status in (OrderStatus.RETURN_ACCEPTED, OrderStatus.RETURN_PICKED_UP):
        return "return_accepted"
    if status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED):
        return status
    if status in SETTLED_STATUSES or status == OrderStatus.RETURN_REQUESTED:
        if payout_bucket(order, now, return_window=return_window) == "earned":
            return "delivered_return_over"
        return "delivered_return_open"
    return None


def vendor_analytics(vendor: Vendor, *, period: str = "30d", now: datetime | None = None) -> dict:
    """Period revenue and order mix for one vendor.

    Revenue is net payout, counted only once an order is past its return
    window. Orders are bucketed by the day they were placed.
    """
    now = now or datetime.utcnow()
    key = (period or "30d").strip().lower()
    start = period_start(key, now)
    window = configured_return_window()

    q = Order.query.filter(Order.vendor_id == int(vendor.id))
    if start is not None:
        q = q.filter(Order.created_at >= start)
    orders = q.order_by(Order.created_at.asc(), Order.id.asc()).all()

    commission = vendor.commission_rate()
    summary = summarize_vendor_ledger(
        orders,
        commission,
        Decimal("0"),
        now,
        vendor_id=int(vendor.id),
        return_window=window,
    )

    counts = {c: 0 for c in CATEGORIES}
    revenue = {c: Decimal("0.00") for c in CATEGORIES}
    days: dict[str, dict] = {}
    for o in orders:
        day = (o.created_at or now).date().isoformat()
        row = days.setdefault(day, {"date": day, "orders": 0, "revenue": Decimal("0.00"), **{c: 0 for c in CATEGORIES}})
        row["orders"] += 1
        category = _category(o, now, window)
        if category is None:
            continue
        counts[category] += 1
        row[category] += 1
        # Refunded goods never pay out.
        if category == "return_accepted":
            continue
        net = compute_order_payout(o.subtotal, commission, o.payment_method).net_payout
        revenue[category] += net
        if category == "delivered_return_over":
            row["revenue"] += net

    earned_orders = summary.earned_orders
    avg = quantize_money(summary.earned / earned_orders) if earned_orders else Decimal("0.00")
    return {
        "vendor_id": int(vendor.id),
        "period": key,
        "from": start.isoformat() if start else None,
        "to": now.isoformat(),
        "summary": {
            "total_revenue": as_float(summary.earned),
            "total_orders": earned_orders,
            "avg_order_value": as_float(avg),
            "pending_payout": as_float(summary.pending),
        },
        "orders_by_status": counts,
        "revenue_by_status": {c: as_float(v) for c, v in revenue.items()},
        "over_time": [dict(row, revenue=as_float(row["revenue"])) for _, row in sorted(days.items())],
    }


def vendor_payout_report(
    vendor: Vendor,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    """Admin view of one vendor over [start, end): order mix, gross, payout."""
    now = now or datetime.utcnow()
    q = Order.query.filter(Order.vendor_id == int(vendor.id))
    if start is not None:
        q = q.filter(Order.created_at >= start)
    if end is not None:
        q = q.filter(Order.created_at < end)
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()

    summary = summarize_vendor_ledger(
        orders,
        vendor.commission_rate(),
        Decimal("0"),
        now,
        vendor_id=int(vendor.id),
        return_window=configured_return_window(),
    )
    payout = summary.to_dict(include_rows=True)
    # Recorded payments are lifetime totals; see paid_to_date.
    payout.pop("paid", None)
    payout.pop("balance", None)

    counts = {s: 0 for s in OrderStatus.ALL}
    gross = Decimal("0.00")
    delivered_gross = Decimal("0.00")
    for o in orders:
        status = (o.status or OrderStatus.PENDING).strip().lower()
        counts[status] = counts.get(status, 0) + 1
        total = quantize_money(o.total)
        gross += total
        if status == OrderStatus.DELIVERED:
            delivered_gross += total

    entry = VendorLedgerEntry.query.filter_by(vendor_id=int(vendor.id)).first()
    return {
        "vendor": vendor.to_dict(),
        "from": start.isoformat() if start else None,
        "to": end.isoformat() if end else None,
        "total_orders": len(orders),
        "counts": counts,
        "gross_income": as_float(gross),
        "delivered_gross": as_float(delivered_gross),
        "avg_order_value": as_float(gross / len(orders)) if orders else 0.0,
        "payout": payout,
        "paid_to_date": as_float(entry.paid if entry else 0),
    }


def top_vendors(*, period: str = "all", limit: int = 10, now: datetime | None = None) -> list[dict]:
    """Vendors ranked by delivered gross, then order count."""
    now = now or datetime.utcnow()
    start = period_start(period or "all", now)
    window = configured_return_window()

    q = Order.query.filter(Order.vendor_id.isnot(None))
    if start is not None:
        q = q.filter(Order.created_at >= start)
    by_vendor: dict[int, list[Order]] = {}
    for o in q.all():
        by_vendor.setdefault(int(o.vendor_id), []).append(o)
    if not by_vendor:
        return []
    vendors = {int(v.id): v for v in Vendor.query.filter(Vendor.id.in_(list(by_vendor))).all()}

    rows = []
    for vendor_id, orders in by_vendor.items():
        v = vendors.get(vendor_id)
        summary = summarize_vendor_ledger(
            orders,
            v.commission_rate() if v else Decimal("0"),
            Decimal("0"),
            now,
            vendor_id=vendor_id,
            return_window=window,
        )
        statuses = [(o.status or "").strip().lower() for o in orders]
        delivered = [o for o in orders if (o.status or "").strip().lower() == OrderStatus.DELIVERED]
        rows.append({
            "vendor_id": vendor_id,
            "vendor_name": (v.name or "") if v else "",
            "vendor_status": (v.status or "") if v else "",
            "total_orders": len(orders),
            "delivered_orders": len(delivered),
            "processing_orders": statuses.count(OrderStatus.PROCESSING),
            "shipped_orders": statuses.count(OrderStatus.SHIPPED),
            "delivered_gross": as_float(sum((quantize_money(o.total) for o in delivered), Decimal("0.00"))),
            "earned_payout": as_float(summary.earned),
            "pending_payout": as_float(summary.pending),
        })
    rows.sort(key=lambda r: (-r["delivered_gross"], -r["total_orders"], r["vendor_id"]))
    return rows[: max(1, int(limit))]
