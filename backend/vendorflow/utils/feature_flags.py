from __future__ import annotations

import json
import os

from flask import current_app, has_app_context


DEFAULT_FLAGS: dict[str, bool] = {
    "jobs.shipment_reconciler_enabled": True,
    "jobs.refund_worker_enabled": True,
    "jobs.admin_review_enabled": True,
    "jobs.stale_claim_reset_enabled": True,
    "notifications.email_enabled": True,
    "notifications.push_enabled": True,
}


def _coerce_bool(value, default: bool = False) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(default)


def _override_flags() -> dict[str, bool]:
    raw = None
    if has_app_context():
        raw = current_app.config.get("FEATURE_FLAGS_JSON")
    if raw is None:
        raw = os.getenv("FEATURE_FLAGS_JSON")
    if isinstance(raw, dict):
        parsed = raw
    else:
        try:
            parsed = json.loads(raw or "{}")
        except Exception:
            parsed = {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): _coerce_bool(v) for k, v in parsed.items()}


def get_all_flags() -> dict[str, bool]:
    flags = dict(DEFAULT_FLAGS)
    flags.update(_override_flags())
    return flags


def is_enabled(name: str, default: bool = False) -> bool:
    flags = get_all_flags()
    if name not in flags:
        return bool(default)
    return bool(flags[name])
