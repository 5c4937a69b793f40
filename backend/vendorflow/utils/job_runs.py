from __future__ import annotations

from datetime import datetime

from vendorflow.extensions import db
from vendorflow.models import JobRun
from vendorflow.utils.events import safe_json
from vendorflow.utils.observability import log_json


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    error: str | None = None,
    summary: dict | None = None,
) -> JobRun | None:
    duration_ms: int | None = None
    try:
        duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    except Exception:
        duration_ms = None
    log_json(
        "job_run",
        level="info" if ok else "warning",
        job_name=job_name,
        ok=bool(ok),
        duration_ms=duration_ms,
        error=error or "",
        summary=summary or {},
    )
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            error=(error or "")[:1000] or None,
            summary_json=safe_json(summary or {}),
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        try:
            db.session.rollback()
        except Exception:
            pass
        return None
