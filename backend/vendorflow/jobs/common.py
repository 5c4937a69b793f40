from __future__ import annotations

import os
import time
from datetime import datetime

from flask import current_app, has_app_context

from vendorflow.utils.feature_flags import is_enabled
from vendorflow.utils.job_runs import record_job_run


def _now():
    return datetime.utcnow()


def config_int(name: str, default: int) -> int:
    raw = None
    if has_app_context():
        raw = current_app.config.get(name)
    if raw is None:
        raw = os.getenv(name)
    try:
        return int(raw) if raw is not None and str(raw).strip() != "" else int(default)
    except Exception:
        return int(default)


def item_delay() -> None:
    """Politeness pause between external calls inside one batch."""
    delay_ms = config_int("WORKER_ITEM_DELAY_MS", 500)
    if delay_ms > 0:
        time.sleep(delay_ms / 1000.0)


def disabled_result(job_name: str, flag: str, started_at: datetime, counters: dict) -> dict | None:
    """Returns the disabled summary when `flag` is off, else None."""
    if is_enabled(flag, default=True):
        return None
    result = {"ok": False, "disabled": True, **counters, "ts": _now().isoformat(), "duration_ms": 0}
    record_job_run(job_name=job_name, ok=False, started_at=started_at, error="disabled_by_flag", summary=result)
    return result


def finish(job_name: str, started_at: datetime, result: dict) -> dict:
    errors = int(result.get("errors") or 0)
    result["ts"] = _now().isoformat()
    result["duration_ms"] = max(0, int((_now() - started_at).total_seconds() * 1000))
    record_job_run(
        job_name=job_name,
        ok=errors == 0,
        started_at=started_at,
        error=None if errors == 0 else f"errors={errors}",
        summary=result,
    )
    return result
