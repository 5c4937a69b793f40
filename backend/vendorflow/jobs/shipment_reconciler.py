from __future__ import annotations

from sqlalchemy import or_

from vendorflow.extensions import db
from vendorflow.integrations.carrier.factory import build_carrier_provider
from vendorflow.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from vendorflow.jobs.common import _now, disabled_result, finish, item_delay
from vendorflow.models import Order
from vendorflow.services.errors import OrderConflictError
from vendorflow.services.order_state_service import OrderStatus, transition_order
from vendorflow.services.shipment_service import create_shipment_for_order, mark_delivered, refresh_tracking
from vendorflow.utils.actors import SYSTEM_ACTOR
from vendorflow.utils.carrier_status import is_pickup_text
from vendorflow.utils.observability import log_json

JOB_NAME = "shipment_reconciler"


def _counters() -> dict:
    return {
        "processed": 0,
        "successful": 0,
        "updated": 0,
        "order_status_updated": 0,
        "shipments_created": 0,
        "errors": 0,
        "skipped": 0,
    }


def _retry_missing_shipments(counters: dict, *, limit: int) -> None:
    """Shipped orders whose booking failed at pack time get another attempt."""
    rows = (
        Order.query.filter(Order.status == OrderStatus.SHIPPED, Order.awb_number.is_(None))
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    for o in rows:
        try:
            shipment = create_shipment_for_order(o, direction="forward", actor=SYSTEM_ACTOR)
            if shipment.get("created"):
                counters["shipments_created"] += 1
        except Exception as e:
            counters["errors"] += 1
            db.session.rollback()
            log_json("shipment_retry_failed", level="warning", order_id=int(o.id), error=str(e)[:200])


def _reconcile_one(o: Order, provider, counters: dict) -> None:
    snapshot = refresh_tracking(o, provider=provider)
    counters["successful"] += 1
    if snapshot["changed"]:
        counters["updated"] += 1

    status = (o.status or "").strip().lower()
    if status == OrderStatus.SHIPPED and snapshot["mapped_status"] == "delivered":
        if mark_delivered(o, actor=SYSTEM_ACTOR) is not None:
            counters["order_status_updated"] += 1
    elif status == OrderStatus.RETURN_ACCEPTED and is_pickup_text(snapshot["status_text"]):
        transition_order(
            o,
            OrderStatus.RETURN_PICKED_UP,
            actor=SYSTEM_ACTOR,
            reason="carrier_pickup",
            metadata={"awb_number": snapshot["awb_number"], "status_text": snapshot["status_text"]},
        )
        counters["order_status_updated"] += 1


def run_shipment_reconciliation(*, limit: int = 500) -> dict:
    """Poll the carrier for every shipped or return-accepted order with an AWB.

    Rules:
      - the tracking snapshot is cached on every successful poll;
      - shipped orders whose carrier status maps to delivered become delivered;
      - return-accepted orders whose carrier reports a pickup become return_picked_up.
    One order failing never aborts the batch.
    """
    started_at = _now()
    counters = _counters()
    disabled = disabled_result(JOB_NAME, "jobs.shipment_reconciler_enabled", started_at, counters)
    if disabled is not None:
        return disabled

    try:
        provider = build_carrier_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        counters["errors"] += 1
        return finish(JOB_NAME, started_at, {"ok": False, **counters, "error": str(e)})

    _retry_missing_shipments(counters, limit=limit)

    rows = (
        Order.query.filter(
            Order.status.in_((OrderStatus.SHIPPED, OrderStatus.RETURN_ACCEPTED)),
            or_(Order.awb_number.isnot(None), Order.return_awb_number.isnot(None)),
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )

    for idx, o in enumerate(rows):
        if idx:
            item_delay()
        counters["processed"] += 1
        try:
            _reconcile_one(o, provider, counters)
        except OrderConflictError:
            # Moved by a request while we were polling; next pass sees the new state.
            counters["skipped"] += 1
        except Exception as e:
            counters["errors"] += 1
            db.session.rollback()
            log_json("shipment_reconcile_item_failed", level="warning", order_id=int(o.id), error=str(e)[:200])

    return finish(JOB_NAME, started_at, {"ok": True, **counters})


def run_once(*, limit: int = 500) -> dict:
    """Standalone entry point for ops scripts."""
    from vendorflow import create_app

    app = create_app()
    with app.app_context():
        return run_shipment_reconciliation(limit=limit)
