from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from vendorflow.extensions import db
from vendorflow.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from vendorflow.integrations.messaging.factory import build_messaging_provider
from vendorflow.models import Notification, Order, User, Vendor
from vendorflow.services.stage_messages import render_stage, stage_audience, stage_type
from vendorflow.utils.feature_flags import is_enabled
from vendorflow.utils.observability import log_json


def resolve_recipients(order: Order, audiences) -> list[User]:
    seen: dict[int, User] = {}
    for audience in audiences or ():
        if audience == "customer":
            rows = User.query.filter_by(id=int(order.customer_id), is_active=True).all()
        elif audience == "vendor":
            if order.vendor_id is None:
                continue
            rows = User.query.filter_by(vendor_id=int(order.vendor_id), role="vendor", is_active=True).all()
        elif audience == "admin":
            rows = User.query.filter_by(role="admin", is_active=True).all()
        elif audience == "available_vendors":
            rows = (
                User.query.join(Vendor, User.vendor_id == Vendor.id)
                .filter(
                    User.role == "vendor",
                    User.is_active.is_(True),
                    Vendor.status == "approved",
                    Vendor.is_active.is_(True),
                )
                .all()
            )
        else:
            rows = []
        for u in rows:
            seen.setdefault(int(u.id), u)
    return list(seen.values())


def _record_once(user: User, order: Order, stage_key: str, copy: dict) -> Notification | None:
    exists = Notification.query.filter_by(
        user_id=int(user.id), order_id=int(order.id), stage_key=stage_key
    ).first()
    if exists:
        return None
    row = Notification(
        user_id=int(user.id),
        order_id=int(order.id),
        stage_key=stage_key,
        type=stage_type(stage_key),
        channel="in_app",
        title=copy["title"],
        message=copy["message"],
        status="queued",
    )
    try:
        with db.session.begin_nested():
            db.session.add(row)
            db.session.flush()
    except IntegrityError:
        # Another dispatcher won the insert for this triple.
        return None
    db.session.commit()
    return row


def _deliver(row: Notification, user: User, order: Order, copy: dict, provider) -> None:
    results = {}
    if provider is None:
        row.status = "skipped"
        row.update_meta(delivery={"reason": "messaging_disabled"})
        return

    if (user.email or "").strip() and is_enabled("notifications.email_enabled", default=True):
        res = provider.send_email(to=user.email, subject=copy["subject"], html=copy["html"], text=copy["message"])
        results["email"] = {"ok": res.ok, "code": res.code, "message": res.message}
    tokens = user.push_tokens()
    if tokens and is_enabled("notifications.push_enabled", default=True):
        res = provider.send_push(
            tokens=tokens,
            title=copy["title"],
            body=copy["message"],
            data={"order_id": int(order.id), "order_number": order.order_number, "stage_key": row.stage_key},
        )
        results["push"] = {"ok": res.ok, "code": res.code, "message": res.message}

    failed = [ch for ch, r in results.items() if not r["ok"]]
    row.provider = getattr(provider, "name", "") or None
    row.update_meta(delivery=results)
    if failed:
        row.status = "failed"
        log_json(
            "notification_delivery_failed",
            level="warning",
            notification_id=int(row.id),
            user_id=int(user.id),
            order_id=int(order.id),
            stage_key=row.stage_key,
            channels=failed,
        )
    else:
        row.status = "sent"
        row.sent_at = datetime.utcnow()


def dispatch_stage(order: Order, stage_key: str, *, audiences=None) -> dict:
    """Fan a lifecycle stage out to every recipient at most once.

    The notification row is committed before any email/push attempt and is
    kept even when delivery fails.
    """
    stage_key = (stage_key or "").strip()[:80]
    copy = render_stage(stage_key, order)
    recipients = resolve_recipients(order, audiences if audiences is not None else stage_audience(stage_key))
    summary = {"stage_key": stage_key, "recipients": len(recipients), "created": 0, "skipped": 0, "sent": 0, "failed": 0}
    if not recipients:
        return summary

    provider = None
    try:
        provider = build_messaging_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        log_json("notification_provider_unavailable", level="warning", stage_key=stage_key, error=str(e))

    for user in recipients:
        row = _record_once(user, order, stage_key, copy)
        if row is None:
            summary["skipped"] += 1
            continue
        summary["created"] += 1
        try:
            _deliver(row, user, order, copy, provider)
        except Exception as e:
            row.status = "failed"
            row.update_meta(delivery={"error": str(e)[:200]})
            log_json("notification_delivery_error", level="warning", notification_id=int(row.id), error=str(e)[:200])
        if row.status == "sent":
            summary["sent"] += 1
        elif row.status == "failed":
            summary["failed"] += 1
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            log_json("notification_status_write_failed", level="warning", notification_id=int(row.id), error=str(e)[:200])
    return summary


def dispatch_stage_safely(order: Order, stage_key: str, *, audiences=None) -> dict | None:
    try:
        return dispatch_stage(order, stage_key, audiences=audiences)
    except Exception as e:
        db.session.rollback()
        log_json("notification_dispatch_failed", level="error", order_id=int(order.id), stage_key=stage_key, error=str(e)[:200])
        return None
