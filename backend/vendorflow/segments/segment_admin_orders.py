from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from vendorflow.extensions import db
from vendorflow.integrations.common import EXTERNAL_CALL_ERRORS
from vendorflow.models import Order, OrderTransition, Vendor
from vendorflow.services.errors import OrderFlowError, OrderValidationError
from vendorflow.services.order_state_service import (
    OrderStatus,
    get_order_or_404,
    transition_order,
    update_order_fields,
)
from vendorflow.services.return_service import accept_return, deny_return, retry_refund
from vendorflow.services.shipment_service import refresh_tracking, set_awb
from vendorflow.services.vendor_assignment_service import assign_vendor
from vendorflow.utils.actors import actor_for
from vendorflow.utils.auth import current_user, is_admin
from vendorflow.utils.events import log_event
from vendorflow.utils.observability import log_json

admin_orders_bp = Blueprint("admin_orders_bp", __name__, url_prefix="/api")

# Status moves an admin may make directly; the rest go through assignment,
# return review or the workers.
ADMIN_STATUS_TARGETS = (OrderStatus.CONFIRMED, OrderStatus.CANCELLED)
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


def _admin():
    u = current_user()
    if not u:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_admin(u):
        return None, (jsonify({"message": "Forbidden"}), 403)
    return u, None


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


def _order_response(order: Order, **extra):
    payload = {"ok": True, "order": order.to_dict()}
    payload.update(extra)
    return jsonify(payload), 200


@admin_orders_bp.get("/admin/orders")
def admin_list_orders():
    u, err = _admin()
    if err:
        return err

    page, limit = _page_args()
    q = Order.query
    status = (request.args.get("status") or "").strip().lower()
    if status and status != "all":
        q = q.filter(Order.status == status)
    vendor_id = (request.args.get("vendor_id") or "").strip()
    if vendor_id:
        try:
            q = q.filter(Order.vendor_id == int(vendor_id))
        except ValueError:
            return jsonify({"ok": False, "error": "VALIDATION_ERROR", "message": "vendor_id must be an integer"}), 400
    if (request.args.get("unassigned") or "").strip().lower() in ("1", "true", "yes"):
        q = q.filter(Order.vendor_id.is_(None))
    search = (request.args.get("q") or "").strip()
    if search:
        q = q.filter(Order.order_number.ilike(f"%{search}%"))

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


@admin_orders_bp.get("/admin/orders/stats/overview")
def admin_order_stats():
    u, err = _admin()
    if err:
        return err

    counts = {s: 0 for s in OrderStatus.ALL}
    for status, n in db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
        counts[(status or "pending")] = int(n or 0)
    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.status == OrderStatus.DELIVERED, Order.payment_status == "paid")
        .scalar()
    )
    unassigned = Order.query.filter(
        Order.vendor_id.is_(None),
        Order.status.in_(OrderStatus.CLAIMABLE),
    ).count()
    refunds_open = Order.query.filter(Order.refund_status.in_(("pending", "processing", "failed"))).count()
    return jsonify({
        "ok": True,
        "counts": counts,
        "total_orders": int(sum(counts.values())),
        "delivered_revenue": float(revenue or 0),
        "unassigned": int(unassigned),
        "admin_review": int(counts.get(OrderStatus.ADMIN_REVIEW_REQUIRED, 0)),
        "refunds_open": int(refunds_open),
    }), 200


@admin_orders_bp.get("/admin/orders/returns")
def admin_list_returns():
    u, err = _admin()
    if err:
        return err

    page, limit = _page_args()
    q = Order.query.filter(Order.return_type.isnot(None))
    return_type = (request.args.get("return_type") or "").strip().lower()
    if return_type and return_type != "all":
        q = q.filter(Order.return_type == return_type)
    total = q.count()
    rows = (
        q.order_by(Order.return_requested_at.desc(), Order.id.desc())
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


@admin_orders_bp.get("/admin/orders/<int:order_id>")
def admin_get_order(order_id: int):
    u, err = _admin()
    if err:
        return err

    order = get_order_or_404(order_id)
    transitions = (
        OrderTransition.query.filter_by(order_id=int(order.id))
        .order_by(OrderTransition.created_at.asc(), OrderTransition.id.asc())
        .all()
    )
    vendor = db.session.get(Vendor, int(order.vendor_id)) if order.vendor_id is not None else None
    return _order_response(
        order,
        transitions=[t.to_dict() for t in transitions],
        vendor=vendor.to_dict() if vendor else None,
    )


@admin_orders_bp.put("/admin/orders/<int:order_id>/status")
def admin_set_status(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    target = str(payload.get("status") or "").strip().lower()
    if target not in ADMIN_STATUS_TARGETS:
        raise OrderValidationError(
            "admins may set status to confirmed or cancelled; use assignment or return review for other moves"
        )
    order = get_order_or_404(order_id)
    transition = transition_order(
        order,
        target,
        actor=actor_for(u),
        reason=str(payload.get("reason") or "admin_status_update")[:240],
    )
    return _order_response(order, transition=transition.to_dict() if transition is not None else None)


@admin_orders_bp.put("/admin/orders/<int:order_id>/payment-status")
def admin_set_payment_status(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    target = str(payload.get("payment_status") or "").strip().lower()
    if target not in PAYMENT_STATUSES:
        raise OrderValidationError(f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}")
    order = get_order_or_404(order_id)
    current = (order.payment_status or "pending").strip().lower()
    values = {
        "payment_status": target,
        "payment_meta_json": order.payment_meta_with(
            {"type": "admin_payment_status", "from": current, "to": target, "admin_id": int(u.id)}
        ),
    }
    txn = str(payload.get("payment_transaction_id") or "").strip()
    if txn:
        values["payment_transaction_id"] = txn[:120]
    gateway = str(payload.get("payment_gateway") or "").strip()
    if gateway:
        values["payment_gateway"] = gateway[:32]
    update_order_fields(order, values, conditions=(Order.payment_status == current,), commit=False)
    log_event(
        "payment_status_updated",
        actor=actor_for(u),
        order_id=int(order.id),
        vendor_id=order.vendor_id,
        metadata={"from": current, "to": target},
    )
    db.session.commit()
    db.session.refresh(order)
    return _order_response(order)


@admin_orders_bp.put("/admin/orders/<int:order_id>/assign-vendor")
def admin_assign_vendor(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    raw = payload.get("vendor_id")
    if raw in (None, ""):
        vendor_id = None
    else:
        try:
            vendor_id = int(raw)
        except (TypeError, ValueError):
            raise OrderValidationError("vendor_id must be an integer or null")
    order = get_order_or_404(order_id)
    assign_vendor(order, vendor_id, actor=actor_for(u))
    return _order_response(order)


@admin_orders_bp.delete("/admin/orders/<int:order_id>")
def admin_cancel_order(order_id: int):
    u, err = _admin()
    if err:
        return err

    order = get_order_or_404(order_id)
    transition_order(order, OrderStatus.CANCELLED, actor=actor_for(u), reason="admin_cancelled")
    return _order_response(order, message="Order cancelled")


@admin_orders_bp.post("/admin/orders/<int:order_id>/return/accept")
def admin_accept_return(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    result = accept_return(order, admin_notes=payload.get("admin_notes"), actor=actor_for(u))
    return _order_response(order, pickup=result.get("pickup"))


@admin_orders_bp.post("/admin/orders/<int:order_id>/return/deny")
def admin_deny_return(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    deny_return(order, admin_notes=str(payload.get("admin_notes") or ""), actor=actor_for(u))
    return _order_response(order)


@admin_orders_bp.put("/admin/orders/<int:order_id>/awb")
def admin_set_awb(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    set_awb(order, payload.get("awb_number"), actor=actor_for(u), direction="forward")
    return _order_response(order)


@admin_orders_bp.put("/admin/orders/<int:order_id>/return-awb")
def admin_set_return_awb(order_id: int):
    u, err = _admin()
    if err:
        return err

    payload = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    set_awb(order, payload.get("awb_number"), actor=actor_for(u), direction="return")
    return _order_response(order)


@admin_orders_bp.post("/admin/orders/<int:order_id>/track")
def admin_refresh_tracking(order_id: int):
    u, err = _admin()
    if err:
        return err

    order = get_order_or_404(order_id)
    try:
        snapshot = refresh_tracking(order)
    except EXTERNAL_CALL_ERRORS as e:
        if isinstance(e, OrderFlowError):
            raise
        log_json("tracking_refresh_failed", level="warning", order_id=int(order.id), error=str(e)[:200])
        return jsonify({"ok": False, "error": "CARRIER_UNAVAILABLE", "message": "Could not fetch tracking"}), 502
    return _order_response(order, tracking=snapshot)


@admin_orders_bp.post("/admin/orders/<int:order_id>/refund/retry")
def admin_retry_refund(order_id: int):
    u, err = _admin()
    if err:
        return err

    order = get_order_or_404(order_id)
    retry_refund(order, actor=actor_for(u))
    return _order_response(order, message="Refund queued for retry")
