from __future__ import annotations

from datetime import timedelta

from vendorflow.extensions import db
from vendorflow.jobs.common import _now, config_int, disabled_result, finish
from vendorflow.models import Order
from vendorflow.services.errors import OrderConflictError
from vendorflow.services.order_state_service import OrderStatus, transition_order
from vendorflow.utils.actors import SYSTEM_ACTOR
from vendorflow.utils.observability import log_json

JOB_NAME = "admin_review_runner"


def run_admin_review_escalation(*, limit: int = 500) -> dict:
    """Escalate pending orders nobody claimed within ADMIN_REVIEW_AFTER_MINUTES."""
    started_at = _now()
    counters = {"processed": 0, "escalated": 0, "errors": 0}
    disabled = disabled_result(JOB_NAME, "jobs.admin_review_enabled", started_at, counters)
    if disabled is not None:
        return disabled

    cutoff = _now() - timedelta(minutes=config_int("ADMIN_REVIEW_AFTER_MINUTES", 30))
    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PENDING,
            Order.vendor_id.is_(None),
            Order.created_at <= cutoff,
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )

    for o in rows:
        counters["processed"] += 1
        try:
            transition_order(
                o,
                OrderStatus.ADMIN_REVIEW_REQUIRED,
                actor=SYSTEM_ACTOR,
                reason="unclaimed_timeout",
                conditions=(Order.vendor_id.is_(None),),
                metadata={"cutoff": cutoff.isoformat()},
            )
            counters["escalated"] += 1
        except OrderConflictError:
            # Claimed between the select and the write.
            continue
        except Exception as e:
            counters["errors"] += 1
            db.session.rollback()
            log_json("admin_review_item_failed", level="warning", order_id=int(o.id), error=str(e)[:200])

    return finish(JOB_NAME, started_at, {"ok": True, **counters})


def run_once(*, limit: int = 500) -> dict:
    from vendorflow import create_app

    app = create_app()
    with app.app_context():
        return run_admin_review_escalation(limit=limit)
