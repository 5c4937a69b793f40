from __future__ import annotations

from flask import Blueprint, jsonify, request

from vendorflow.extensions import db
from vendorflow.models import Order
from vendorflow.services.return_service import request_return
from vendorflow.utils.actors import actor_for
from vendorflow.utils.auth import current_user, is_admin

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _can_view(u, order: Order) -> bool:
    return is_admin(u) or int(order.customer_id) == int(u.id)


@orders_bp.get("/orders")
def my_orders():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401

    q = Order.query.filter(Order.customer_id == int(u.id))
    status = (request.args.get("status") or "").strip().lower()
    if status and status != "all":
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).limit(100).all()
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows]}), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401

    order = db.session.get(Order, int(order_id))
    if not order or not _can_view(u, order):
        return jsonify({"message": "Not found"}), 404
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.post("/orders/<int:order_id>/return")
def create_return_request(order_id: int):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401

    order = db.session.get(Order, int(order_id))
    if not order or int(order.customer_id) != int(u.id):
        return jsonify({"message": "Not found"}), 404

    payload = request.get_json(silent=True) or {}
    request_return(
        order,
        reason=str(payload.get("reason") or ""),
        attachments=payload.get("attachments"),
        actor=actor_for(u),
    )
    return jsonify({
        "ok": True,
        "order": order.to_dict(),
        "message": "Return request submitted successfully",
    }), 201


@orders_bp.get("/orders/<int:order_id>/tracking")
def order_tracking(order_id: int):
    """Last cached carrier snapshot; the reconciler keeps it fresh."""
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401

    order = db.session.get(Order, int(order_id))
    if not order or not _can_view(u, order):
        return jsonify({"message": "Not found"}), 404
    return jsonify({
        "ok": True,
        "status": order.status,
        "awb_number": order.awb_number,
        "return_awb_number": order.return_awb_number,
        "dtdc_status": order.dtdc_status,
        "return_dtdc_status": order.return_dtdc_status,
        "tracking": order.tracking_data(),
        "tracking_last_updated": order.tracking_last_updated.isoformat() if order.tracking_last_updated else None,
    }), 200
