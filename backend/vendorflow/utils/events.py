from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from vendorflow.extensions import db
from vendorflow.models import PlatformEvent
from vendorflow.utils.actors import parse_actor
from vendorflow.utils.observability import get_request_id, log_json


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    try:
        return str(value)
    except Exception:
        return "<unserializable>"


def safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    try:
        return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    except Exception:
        return "{}"


def log_event(
    event_type: str,
    *,
    actor=None,
    order_id: int | None = None,
    vendor_id: int | None = None,
    severity: str = "INFO",
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort audit event.

    Never raises to the caller. The row is flushed inside a savepoint and is
    committed together with the caller's transaction.
    """
    key = (idempotency_key or "").strip()[:180] or None
    try:
        if key:
            existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
            if existing:
                return existing

        actor_type, actor_id = parse_actor(actor)
        row = PlatformEvent(
            event_type=(event_type or "unknown").strip()[:80],
            actor_type=actor_type[:32],
            actor_id=actor_id,
            order_id=int(order_id) if order_id is not None else None,
            vendor_id=int(vendor_id) if vendor_id is not None else None,
            request_id=(get_request_id() or "").strip()[:80] or None,
            idempotency_key=key,
            severity=(severity or "INFO").strip().upper()[:16] or "INFO",
            metadata_json=safe_json(metadata or {}),
        )
        with db.session.begin_nested():
            db.session.add(row)
            db.session.flush()
        return row
    except IntegrityError:
        # The savepoint is already rolled back; the outer transaction survives.
        if key:
            return PlatformEvent.query.filter_by(idempotency_key=key).first()
        return None
    except Exception as exc:
        log_json("platform_event_write_failed", level="warning", event_type=event_type, error=str(exc)[:200])
        return None
