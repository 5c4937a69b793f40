from __future__ import annotations

from sqlalchemy import or_

from vendorflow.extensions import db
from vendorflow.integrations.common import (
    EXTERNAL_CALL_ERRORS,
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
)
from vendorflow.integrations.payments.factory import build_payments_provider
from vendorflow.jobs.common import _now, disabled_result, finish, item_delay
from vendorflow.models import Order
from vendorflow.services.errors import OrderConflictError
from vendorflow.services.notification_dispatcher import dispatch_stage_safely
from vendorflow.services.order_state_service import OrderStatus, update_order_fields
from vendorflow.utils.actors import SYSTEM_ACTOR
from vendorflow.utils.events import log_event
from vendorflow.utils.money import money_major_to_minor
from vendorflow.utils.observability import log_json

JOB_NAME = "refund_worker"

GATEWAY_METHODS = ("online", "wallet")

_QUEUED = or_(Order.refund_status.is_(None), Order.refund_status == "pending")


def _counters() -> dict:
    return {
        "processed": 0,
        "completed": 0,
        "failed": 0,
        "processing": 0,
        "skipped": 0,
        "errors": 0,
        "gateway_calls": 0,
    }


def _complete(o: Order, *, from_condition, refund_id: str | None, provider: str | None) -> None:
    update_order_fields(
        o,
        {
            "refund_status": "completed",
            "return_refund_status": "completed",
            "return_type": "completed",
            "payment_status": "refunded",
            "refund_transaction_id": refund_id,
            "payment_meta_json": o.payment_meta_with(
                {"type": "refund_completed", "refund_id": refund_id, "provider": provider or "cod"}
            ),
        },
        conditions=(Order.status == OrderStatus.RETURN_PICKED_UP, from_condition),
        commit=False,
    )
    log_event(
        "refund_completed",
        actor=SYSTEM_ACTOR,
        order_id=int(o.id),
        vendor_id=o.vendor_id,
        idempotency_key=f"refund_completed:{int(o.id)}",
        metadata={"refund_id": refund_id, "payment_method": o.payment_method},
    )
    db.session.commit()
    db.session.refresh(o)
    dispatch_stage_safely(o, "refund:completed")


def _fail(o: Order, *, from_condition, error: str) -> None:
    update_order_fields(
        o,
        {
            "refund_status": "failed",
            "return_refund_status": "failed",
            "payment_meta_json": o.payment_meta_with({"type": "refund_failed", "error": error}),
        },
        conditions=(Order.status == OrderStatus.RETURN_PICKED_UP, from_condition),
        commit=False,
    )
    log_event(
        "refund_failed",
        actor=SYSTEM_ACTOR,
        order_id=int(o.id),
        vendor_id=o.vendor_id,
        severity="WARN",
        metadata={"error": error, "payment_method": o.payment_method},
    )
    db.session.commit()
    db.session.refresh(o)
    dispatch_stage_safely(o, "refund:failed")


def _settle_gateway(o: Order, provider, counters: dict) -> None:
    if (o.payment_status or "") != "paid":
        # Nothing was captured; the row stays queued until the payment settles.
        counters["skipped"] += 1
        log_json("refund_payment_not_captured", level="warning", order_id=int(o.id), payment_status=o.payment_status)
        return
    reference = o.payment_reference()
    if not reference:
        _fail(o, from_condition=_QUEUED, error="payment_reference_missing")
        counters["failed"] += 1
        return

    # Claimed before the gateway call so a crash mid-call leaves a visible "processing" row.
    update_order_fields(
        o,
        {
            "refund_status": "processing",
            "return_refund_status": "processing",
            "payment_meta_json": o.payment_meta_with({"type": "refund_started", "payment_id": reference}),
        },
        conditions=(Order.status == OrderStatus.RETURN_PICKED_UP, _QUEUED),
    )
    counters["processing"] += 1
    dispatch_stage_safely(o, "refund:processing")

    counters["gateway_calls"] += 1
    try:
        result = provider.refund(
            payment_id=reference,
            amount_minor=money_major_to_minor(o.total),
            notes={"order_id": str(int(o.id)), "order_number": o.order_number, "reason": "return_picked_up"},
        )
    except EXTERNAL_CALL_ERRORS as e:
        _fail(o, from_condition=Order.refund_status == "processing", error=str(e)[:300])
        counters["failed"] += 1
        log_json("refund_gateway_failed", level="warning", order_id=int(o.id), error=str(e)[:200])
        return

    _complete(o, from_condition=Order.refund_status == "processing", refund_id=result.refund_id, provider=result.provider)
    counters["completed"] += 1


def run_refund_settlement(*, limit: int = 500) -> dict:
    """Settle refunds for picked-up returns.

    COD orders complete locally. Online and wallet orders go through the
    payment gateway; completed refunds are never selected again, and failed
    or processing ones wait for an admin retry. Orders whose payment was never
    captured stay queued.
    """
    started_at = _now()
    counters = _counters()
    disabled = disabled_result(JOB_NAME, "jobs.refund_worker_enabled", started_at, counters)
    if disabled is not None:
        return disabled

    rows = (
        Order.query.filter(Order.status == OrderStatus.RETURN_PICKED_UP, _QUEUED)
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )

    provider = None
    provider_error = None
    for idx, o in enumerate(rows):
        counters["processed"] += 1
        method = (o.payment_method or "").strip().lower()
        try:
            if (o.payment_status or "") == "refunded":
                # Refunded outside the worker; close the queue entry.
                _complete(o, from_condition=_QUEUED, refund_id=o.refund_transaction_id, provider="manual")
                counters["completed"] += 1
                continue
            if method == "cod":
                _complete(o, from_condition=_QUEUED, refund_id=None, provider=None)
                counters["completed"] += 1
                continue
            if method not in GATEWAY_METHODS:
                counters["skipped"] += 1
                continue
            if provider is None and provider_error is None:
                try:
                    provider = build_payments_provider()
                except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
                    provider_error = str(e)
            if provider is None:
                # Left queued; the next run retries once payments are configured.
                counters["skipped"] += 1
                log_json("refund_provider_unavailable", level="warning", order_id=int(o.id), error=provider_error)
                continue
            if idx:
                item_delay()
            _settle_gateway(o, provider, counters)
        except OrderConflictError:
            counters["skipped"] += 1
        except Exception as e:
            counters["errors"] += 1
            db.session.rollback()
            log_json("refund_settlement_item_failed", level="warning", order_id=int(o.id), error=str(e)[:200])

    return finish(JOB_NAME, started_at, {"ok": True, **counters})


def run_once(*, limit: int = 500) -> dict:
    from vendorflow import create_app

    app = create_app()
    with app.app_context():
        return run_refund_settlement(limit=limit)
