from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request

from vendorflow.jobs.admin_review_runner import JOB_NAME as ADMIN_REVIEW_JOB, run_admin_review_escalation
from vendorflow.jobs.refund_worker import JOB_NAME as REFUND_JOB, run_refund_settlement
from vendorflow.jobs.shipment_reconciler import JOB_NAME as RECONCILER_JOB, run_shipment_reconciliation
from vendorflow.jobs.stale_claim_runner import JOB_NAME as STALE_CLAIM_JOB, run_stale_claim_reset
from vendorflow.models import JobRun, PlatformEvent
from vendorflow.utils.auth import current_user, is_admin
from vendorflow.utils.feature_flags import get_all_flags
from vendorflow.utils.observability import log_json

admin_jobs_bp = Blueprint("admin_jobs_bp", __name__, url_prefix="/api")

JOBS = {
    RECONCILER_JOB: run_shipment_reconciliation,
    REFUND_JOB: run_refund_settlement,
    ADMIN_REVIEW_JOB: run_admin_review_escalation,
    STALE_CLAIM_JOB: run_stale_claim_reset,
}


def _require_admin():
    u = current_user()
    if not u:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_admin(u):
        return None, (jsonify({"message": "Forbidden"}), 403)
    return u, None


@admin_jobs_bp.get("/admin/jobs/runs")
def admin_job_runs():
    _, err = _require_admin()
    if err:
        return err

    try:
        limit = max(1, min(int(request.args.get("limit") or 50), 200))
    except Exception:
        limit = 50
    q = JobRun.query
    job_name = (request.args.get("job_name") or "").strip()
    if job_name:
        q = q.filter(JobRun.job_name == job_name)
    rows = q.order_by(JobRun.ran_at.desc(), JobRun.id.desc()).limit(limit).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_jobs_bp.get("/admin/jobs/summary")
def admin_jobs_summary():
    _, err = _require_admin()
    if err:
        return err

    now = datetime.utcnow()
    jobs = {}
    for name in JOBS:
        last = (
            JobRun.query.filter_by(job_name=name)
            .order_by(JobRun.ran_at.desc(), JobRun.id.desc())
            .first()
        )
        jobs[name] = {
            "last_run_at": last.ran_at.isoformat() if last and last.ran_at else None,
            "last_ok": bool(last.ok) if last is not None else None,
            "last_error": (last.error or "") if last else "",
        }
    errors_24h = PlatformEvent.query.filter(
        PlatformEvent.created_at >= now - timedelta(hours=24),
        PlatformEvent.severity == "ERROR",
    ).count()
    return jsonify({
        "ok": True,
        "server_time": now.isoformat(),
        "jobs": jobs,
        "flags": get_all_flags(),
        "events_last_24h_errors": int(errors_24h),
    }), 200


@admin_jobs_bp.post("/admin/jobs/<job_name>/run")
def admin_run_job(job_name: str):
    u, err = _require_admin()
    if err:
        return err

    job = JOBS.get((job_name or "").strip())
    if job is None:
        return jsonify({"message": "Not found"}), 404
    payload = request.get_json(silent=True) or {}
    try:
        limit = max(1, min(int(payload.get("limit") or 500), 1000))
    except Exception:
        limit = 500
    log_json("admin_job_triggered", job_name=job_name, admin_id=int(u.id), limit=limit)
    result = job(limit=limit)
    return jsonify({"ok": bool(result.get("ok")), "job_name": job_name, "result": result}), 200
