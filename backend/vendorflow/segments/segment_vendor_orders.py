from __future__ import annotations

import io

from flask import Blueprint, jsonify, request, send_file
from sqlalchemy import func

from vendorflow.extensions import db
from vendorflow.integrations.common import EXTERNAL_CALL_ERRORS
from vendorflow.models import Order
from vendorflow.services.order_state_service import OrderStatus, get_order_or_404
from vendorflow.services.shipment_service import download_label, vendor_update_status
from vendorflow.services.vendor_analytics_service import vendor_analytics
from vendorflow.services.vendor_assignment_service import cancel_by_vendor, claim_order, list_unassigned
from vendorflow.services.vendor_ledger_service import get_vendor_ledger
from vendorflow.utils.actors import actor_for
from vendorflow.utils.auth import current_user, linked_vendor, role_of
from vendorflow.utils.observability import log_json

vendor_orders_bp = Blueprint("vendor_orders_bp", __name__, url_prefix="/api")


def _vendor_context():
    """(user, vendor, error_response) for the calling vendor account."""
    u = current_user()
    if not u:
        return None, None, (jsonify({"message": "Unauthorized"}), 401)
    if role_of(u) != "vendor":
        return u, None, (jsonify({"message": "Forbidden"}), 403)
    vendor = linked_vendor(u)
    if vendor is None:
        return u, None, (
            jsonify({
                "ok": False,
                "error": "VENDOR_NOT_LINKED",
                "message": "Vendor account not linked. Please contact support.",
            }),
            400,
        )
    return u, vendor, None


def _page_args(default_limit: int = 20):
    try:
        page = max(1, int(request.args.get("page") or 1))
    except Exception:
        page = 1
    try:
        limit = max(1, min(int(request.args.get("limit") or default_limit), 100))
    except Exception:
        limit = default_limit
    return page, limit


def _owned(order: Order, vendor) -> bool:
    return order.vendor_id is not None and int(order.vendor_id) == int(vendor.id)


@vendor_orders_bp.get("/vendor/orders")
def vendor_list_orders():
    u, vendor, err = _vendor_context()
    if err:
        return err

    page, limit = _page_args()
    q = Order.query.filter(Order.vendor_id == int(vendor.id))
    status = (request.args.get("status") or "").strip().lower()
    if status and status != "all":
        q = q.filter(Order.status == status)
    total = q.count()
    rows = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        "ok": True,
        "items": [o.to_dict() for o in rows],
        "page": page,
        "limit": limit,
        "total": int(total),
    }), 200


@vendor_orders_bp.get("/vendor/orders/unassigned")
def vendor_unassigned_orders():
    u, vendor, err = _vendor_context()
    if err:
        return err
    if not vendor.can_accept_orders():
        return jsonify({"ok": True, "items": [], "message": "Vendor is not approved to accept orders"}), 200

    page, limit = _page_args()
    rows = list_unassigned(limit=limit, offset=(page - 1) * limit)
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows], "page": page, "limit": limit}), 200


@vendor_orders_bp.get("/vendor/orders/dashboard/stats")
def vendor_dashboard_stats():
    u, vendor, err = _vendor_context()
    if err:
        return err

    counts = {s: 0 for s in OrderStatus.ALL}
    rows = (
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.vendor_id == int(vendor.id))
        .group_by(Order.status)
        .all()
    )
    for status, n in rows:
        counts[(status or "pending")] = int(n or 0)
    recent = (
        Order.query.filter(Order.vendor_id == int(vendor.id))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(3)
        .all()
    )
    return jsonify({
        "ok": True,
        "counts": counts,
        "total_orders": int(sum(counts.values())),
        "recent_orders": [o.to_dict() for o in recent],
        "ledger": get_vendor_ledger(vendor),
    }), 200


@vendor_orders_bp.get("/vendor/orders/analytics")
def vendor_order_analytics():
    u, vendor, err = _vendor_context()
    if err:
        return err

    period = (request.args.get("period") or "30d").strip().lower()
    return jsonify({"ok": True, "analytics": vendor_analytics(vendor, period=period)}), 200


@vendor_orders_bp.get("/vendor/orders/<int:order_id>")
def vendor_get_order(order_id: int):
    u, vendor, err = _vendor_context()
    if err:
        return err

    order = db.session.get(Order, int(order_id))
    if not order:
        return jsonify({"message": "Not found"}), 404
    claimable = order.vendor_id is None and (order.status or "") in OrderStatus.CLAIMABLE
    if not _owned(order, vendor) and not claimable:
        return jsonify({"message": "Not found"}), 404
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@vendor_orders_bp.post("/vendor/orders/<int:order_id>/accept")
def vendor_accept_order(order_id: int):
    u, vendor, err = _vendor_context()
    if err:
        return err

    order = get_order_or_404(order_id)
    transition = claim_order(order, vendor, actor=actor_for(u))
    return jsonify({
        "ok": True,
        "order": order.to_dict(),
        "transition": transition.to_dict() if transition is not None else None,
    }), 200


@vendor_orders_bp.post("/vendor/orders/<int:order_id>/cancel")
def vendor_cancel_order(order_id: int):
    u, vendor, err = _vendor_context()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    cancel_by_vendor(order, vendor, reason=str(payload.get("reason") or "").strip(), actor=actor_for(u))
    return jsonify({
        "ok": True,
        "order": order.to_dict(),
        "message": "Order sent back for admin review",
    }), 200


@vendor_orders_bp.put("/vendor/orders/<int:order_id>/status")
def vendor_set_status(order_id: int):
    u, vendor, err = _vendor_context()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    result = vendor_update_status(order, vendor, str(payload.get("status") or ""), actor=actor_for(u))
    transition = result.get("transition")
    return jsonify({
        "ok": True,
        "order": order.to_dict(),
        "transition": transition.to_dict() if transition is not None else None,
        "shipment": result.get("shipment"),
    }), 200


@vendor_orders_bp.get("/vendor/orders/<int:order_id>/label")
def vendor_download_label(order_id: int):
    u, vendor, err = _vendor_context()
    if err:
        return err

    order = db.session.get(Order, int(order_id))
    if not order or not _owned(order, vendor):
        return jsonify({"message": "Not found"}), 404
    awb = (order.awb_number or "").strip()
    if not awb:
        return jsonify({"message": "Label not available"}), 404

    try:
        pdf_bytes = download_label(order, vendor)
    except EXTERNAL_CALL_ERRORS as e:
        log_json("label_download_failed", level="warning", order_id=int(order.id), error=str(e)[:200])
        return jsonify({"ok": False, "error": "CARRIER_UNAVAILABLE", "message": "Could not fetch label"}), 502
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"label_{awb}.pdf",
    )
