from __future__ import annotations

from datetime import timedelta

from vendorflow.extensions import db
from vendorflow.jobs.common import _now, config_int, disabled_result, finish
from vendorflow.models import Order
from vendorflow.services.errors import OrderConflictError
from vendorflow.services.notification_dispatcher import dispatch_stage_safely
from vendorflow.services.order_state_service import OrderStatus, transition_order
from vendorflow.services.vendor_assignment_service import ACCEPTED_BY_VENDOR
from vendorflow.utils.actors import SYSTEM_ACTOR
from vendorflow.utils.observability import log_json

JOB_NAME = "stale_claim_runner"


def run_stale_claim_reset(*, limit: int = 500) -> dict:
    """Release vendor claims that never reached shipment.

    A processing order claimed by a vendor, without an AWB and untouched for
    STALE_CLAIM_HOURS, goes back to pending and is offered to every approved
    vendor again.
    """
    started_at = _now()
    counters = {"processed": 0, "reset": 0, "notified": 0, "errors": 0}
    disabled = disabled_result(JOB_NAME, "jobs.stale_claim_reset_enabled", started_at, counters)
    if disabled is not None:
        return disabled

    cutoff = _now() - timedelta(hours=config_int("STALE_CLAIM_HOURS", 24))
    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PROCESSING,
            Order.assignment_mode == ACCEPTED_BY_VENDOR,
            Order.awb_number.is_(None),
            Order.updated_at <= cutoff,
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )

    for o in rows:
        counters["processed"] += 1
        previous_vendor_id = o.vendor_id
        try:
            transition = transition_order(
                o,
                OrderStatus.PENDING,
                actor=SYSTEM_ACTOR,
                reason="stale_claim",
                changes={
                    "vendor_id": None,
                    "assignment_mode": None,
                    "payment_meta_json": o.payment_meta_with(
                        {"type": "stale_claim_reset", "vendor_id": previous_vendor_id}
                    ),
                },
                conditions=(
                    Order.vendor_id == previous_vendor_id,
                    Order.awb_number.is_(None),
                    Order.updated_at <= cutoff,
                ),
                metadata={"previous_vendor_id": previous_vendor_id},
            )
            counters["reset"] += 1
            summary = dispatch_stage_safely(o, f"order:available:{int(transition.id)}")
            counters["notified"] += int((summary or {}).get("created") or 0)
        except OrderConflictError:
            continue
        except Exception as e:
            counters["errors"] += 1
            db.session.rollback()
            log_json("stale_claim_item_failed", level="warning", order_id=int(o.id), error=str(e)[:200])

    return finish(JOB_NAME, started_at, {"ok": True, **counters})


def run_once(*, limit: int = 500) -> dict:
    from vendorflow import create_app

    app = create_app()
    with app.app_context():
        return run_stale_claim_reset(limit=limit)
