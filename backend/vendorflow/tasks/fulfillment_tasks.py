from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    try:
        current_app.logger.info(json.dumps(payload, default=str))
    except Exception:
        pass


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _batch_limit(env_name: str, default: int = 500) -> int:
    try:
        limit = int((os.getenv(env_name) or str(default)).strip() or default)
    except Exception:
        limit = default
    return max(1, min(limit, 1000))


def _run_job(task, task_name: str, job, *, limit: int, trace_id: str = ""):
    started = time.perf_counter()
    try:
        result = job(limit=limit)
        _task_log(
            task_name,
            status="ok" if bool(result.get("ok")) else "failed",
            started_at=started,
            trace_id=trace_id,
            limit=limit,
            errors=int(result.get("errors") or 0),
        )
        return result
    except Exception as exc:
        if int(task.request.retries or 0) < int(task.max_retries or 0):
            countdown = _retry_countdown(int(task.request.retries or 0))
            _task_log(
                task_name,
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise task.retry(exc=exc, countdown=countdown)
        _task_log(task_name, status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise


@shared_task(bind=True, name="vendorflow.tasks.fulfillment_tasks.reconcile_shipments", max_retries=3)
def reconcile_shipments(self, *, trace_id: str = ""):
    from vendorflow.jobs.shipment_reconciler import run_shipment_reconciliation

    return _run_job(
        self,
        "reconcile_shipments",
        run_shipment_reconciliation,
        limit=_batch_limit("SHIPMENT_RECONCILE_LIMIT"),
        trace_id=trace_id,
    )


@shared_task(bind=True, name="vendorflow.tasks.fulfillment_tasks.settle_refunds", max_retries=3)
def settle_refunds(self, *, trace_id: str = ""):
    from vendorflow.jobs.refund_worker import run_refund_settlement

    return _run_job(
        self,
        "settle_refunds",
        run_refund_settlement,
        limit=_batch_limit("REFUND_SETTLEMENT_LIMIT"),
        trace_id=trace_id,
    )


@shared_task(bind=True, name="vendorflow.tasks.fulfillment_tasks.escalate_unclaimed", max_retries=3)
def escalate_unclaimed(self, *, trace_id: str = ""):
    from vendorflow.jobs.admin_review_runner import run_admin_review_escalation

    return _run_job(
        self,
        "escalate_unclaimed",
        run_admin_review_escalation,
        limit=_batch_limit("ADMIN_REVIEW_LIMIT"),
        trace_id=trace_id,
    )


@shared_task(bind=True, name="vendorflow.tasks.fulfillment_tasks.reset_stale_claims", max_retries=3)
def reset_stale_claims(self, *, trace_id: str = ""):
    from vendorflow.jobs.stale_claim_runner import run_stale_claim_reset

    return _run_job(
        self,
        "reset_stale_claims",
        run_stale_claim_reset,
        limit=_batch_limit("STALE_CLAIM_LIMIT"),
        trace_id=trace_id,
    )
