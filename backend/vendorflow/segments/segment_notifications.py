from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request

from vendorflow.extensions import db
from vendorflow.models import Notification
from vendorflow.utils.auth import current_user

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


def _unread(rows) -> int:
    return sum(1 for r in rows if not bool(r.meta_dict().get("is_read")))


@notifications_bp.get("/notifications")
def list_notifications():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401

    try:
        limit = max(1, min(int(request.args.get("limit") or 80), 200))
    except Exception:
        limit = 80
    rows = (
        Notification.query.filter_by(user_id=int(user.id))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    if (request.args.get("unread") or "").strip().lower() in ("1", "true", "yes"):
        rows = [r for r in rows if not bool(r.meta_dict().get("is_read"))]
    return jsonify({"ok": True, "items": [x.to_dict() for x in rows], "unread_count": _unread(rows)}), 200


@notifications_bp.route("/notifications/<int:notification_id>/read", methods=["PUT", "POST"])
def mark_notification_read(notification_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401

    row = Notification.query.filter_by(id=int(notification_id), user_id=int(user.id)).first()
    if not row:
        return jsonify({"message": "Not found"}), 404
    row.mark_read()
    db.session.commit()
    return jsonify({"ok": True, "item": row.to_dict()}), 200


@notifications_bp.route("/notifications/mark-all-read", methods=["PUT", "POST"])
def mark_all_notifications_read():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401

    stamped = datetime.utcnow()
    rows = Notification.query.filter_by(user_id=int(user.id)).all()
    updated = 0
    for row in rows:
        if bool(row.meta_dict().get("is_read")):
            continue
        row.mark_read(stamped)
        updated += 1
    db.session.commit()
    return jsonify({"ok": True, "updated": updated}), 200
