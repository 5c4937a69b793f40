from __future__ import annotations

from vendorflow.extensions import db
from vendorflow.models import Order, Vendor
from vendorflow.services.errors import (
    InvalidTransitionError,
    OrderConflictError,
    OrderValidationError,
    TransitionForbiddenError,
)
from vendorflow.services.notification_dispatcher import dispatch_stage_safely
from vendorflow.services.order_state_service import (
    OrderStatus,
    transition_order,
    update_order_fields,
)
from vendorflow.utils.actors import parse_actor
from vendorflow.utils.events import log_event

ACCEPTED_BY_VENDOR = "accepted-by-vendor"
ASSIGNED_BY_ADMIN = "assigned-by-admin"


def list_unassigned(*, limit: int = 50, offset: int = 0) -> list[Order]:
    return (
        Order.query.filter(
            Order.vendor_id.is_(None),
            Order.status.in_(OrderStatus.CLAIMABLE),
            Order.payment_status == "paid",
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 200)))
        .all()
    )


def claim_order(order: Order, vendor: Vendor, *, actor=None):
    """First accept wins: bind an unassigned paid order to `vendor`.

    The write is conditioned on vendor_id still being NULL; a loser gets
    OrderConflictError and the order is left untouched.
    """
    if vendor is None or not vendor.can_accept_orders():
        raise TransitionForbiddenError("vendor_not_approved")
    if order.vendor_id is not None:
        raise OrderConflictError("order_already_claimed")
    status = (order.status or "").strip().lower()
    if status not in OrderStatus.CLAIMABLE:
        raise InvalidTransitionError(f"order_not_claimable:{status}")

    try:
        return transition_order(
            order,
            OrderStatus.PROCESSING,
            actor=actor,
            reason="vendor_claim",
            changes={"vendor_id": int(vendor.id), "assignment_mode": ACCEPTED_BY_VENDOR},
            conditions=(Order.vendor_id.is_(None),),
            metadata={"vendor_id": int(vendor.id)},
        )
    except OrderConflictError:
        db.session.refresh(order)
        log_event(
            "order_claim_lost",
            actor=actor,
            order_id=int(order.id),
            vendor_id=int(vendor.id),
            severity="WARN",
            metadata={"winner_vendor_id": order.vendor_id, "status": order.status},
        )
        db.session.commit()
        raise OrderConflictError("order_already_claimed")


def assign_vendor(order: Order, vendor_id: int | None, *, actor=None) -> Order:
    """Admin assignment or unassignment.

    A paid order waiting for a seller moves to processing. An existing
    assignment mode is kept so vendor-claim provenance survives.
    """
    status = (order.status or "").strip().lower()
    if status not in OrderStatus.PRE_SHIPPED:
        raise InvalidTransitionError(f"assignment_locked:{status}")

    if vendor_id is None:
        if status == OrderStatus.PROCESSING:
            raise InvalidTransitionError("unassign_requires_unclaimed_order")
        update_order_fields(
            order,
            {"vendor_id": None, "assignment_mode": None},
            conditions=(Order.status == status,),
        )
        log_event("vendor_unassigned", actor=actor, order_id=int(order.id), metadata={"status": status})
        db.session.commit()
        return order

    vendor = db.session.get(Vendor, int(vendor_id))
    if vendor is None:
        raise OrderValidationError("vendor not found")
    if not vendor.can_accept_orders():
        raise OrderValidationError("vendor is not approved or inactive")

    previous_vendor_id = order.vendor_id
    changes = {
        "vendor_id": int(vendor.id),
        "assignment_mode": order.assignment_mode or ASSIGNED_BY_ADMIN,
    }
    guard = Order.vendor_id.is_(None) if previous_vendor_id is None else Order.vendor_id == int(previous_vendor_id)

    moves_to_processing = status != OrderStatus.PROCESSING and (order.payment_status or "") == "paid"
    transition = None
    if moves_to_processing:
        transition = transition_order(
            order,
            OrderStatus.PROCESSING,
            actor=actor,
            reason="admin_assignment",
            changes=changes,
            conditions=(guard,),
            metadata={"vendor_id": int(vendor.id), "previous_vendor_id": previous_vendor_id},
        )
    else:
        update_order_fields(order, changes, conditions=(Order.status == status, guard))

    event = log_event(
        "vendor_assigned",
        actor=actor,
        order_id=int(order.id),
        vendor_id=int(vendor.id),
        metadata={"previous_vendor_id": previous_vendor_id, "status": order.status},
    )
    db.session.commit()
    if previous_vendor_id != int(vendor.id):
        # Keyed per assignment; a vendor assigned to the same order again is told again.
        marker = event.id if event is not None else (transition.id if transition is not None else vendor.id)
        dispatch_stage_safely(order, f"order:assigned:{int(marker)}")
    return order


def cancel_by_vendor(order: Order, vendor: Vendor, *, reason: str = "", actor=None):
    """Hand a claimed order back before shipment; it waits for admin review."""
    if vendor is None or order.vendor_id is None or int(order.vendor_id) != int(vendor.id):
        raise TransitionForbiddenError("order is not assigned to this vendor")
    status = (order.status or "").strip().lower()
    if status != OrderStatus.PROCESSING:
        raise InvalidTransitionError(f"vendor_cancel_not_allowed:{status}")
    if (order.awb_number or "").strip():
        raise InvalidTransitionError("shipment_already_created")

    actor_type, actor_id = parse_actor(actor)
    reason = (reason or "").strip()[:500]
    meta_json = order.payment_meta_with(
        {
            "type": "vendor_cancellation",
            "vendor_id": int(vendor.id),
            "actor_type": actor_type,
            "actor_id": actor_id,
            "reason": reason,
        }
    )
    return transition_order(
        order,
        OrderStatus.ADMIN_REVIEW_REQUIRED,
        actor=actor,
        reason=reason or "vendor_cancellation",
        changes={"vendor_id": None, "assignment_mode": None, "payment_meta_json": meta_json},
        conditions=(Order.vendor_id == int(vendor.id), Order.awb_number.is_(None)),
        metadata={"vendor_id": int(vendor.id)},
    )
