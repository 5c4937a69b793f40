from __future__ import annotations

import json
from datetime import datetime

from vendorflow.models import Order
from vendorflow.services.errors import InvalidTransitionError, OrderValidationError, TransitionForbiddenError
from vendorflow.services.order_state_service import OrderStatus, transition_order, update_order_fields
from vendorflow.services.shipment_service import create_shipment_for_order
from vendorflow.utils.actors import parse_actor
from vendorflow.utils.observability import log_json

MAX_ATTACHMENTS = 5


def _clean_attachments(raw) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise OrderValidationError("attachments must be a list of urls")
    cleaned = []
    for item in raw:
        url = str(item or "").strip()
        if url:
            cleaned.append(url[:1024])
    if len(cleaned) > MAX_ATTACHMENTS:
        raise OrderValidationError(f"at most {MAX_ATTACHMENTS} attachments are allowed")
    return cleaned


def request_return(order: Order, *, reason: str, attachments=None, actor=None):
    """Customer asks to return a delivered order."""
    actor_type, actor_id = parse_actor(actor)
    if actor_type != "customer" or actor_id != int(order.customer_id):
        raise TransitionForbiddenError("only the ordering customer may request a return")
    if order.return_type:
        raise InvalidTransitionError("return_already_requested")
    reason = (reason or "").strip()
    if not reason:
        raise OrderValidationError("reason is required")
    files = _clean_attachments(attachments)
    now = datetime.utcnow()
    return transition_order(
        order,
        OrderStatus.RETURN_REQUESTED,
        actor=actor,
        reason="return_requested",
        changes={
            "return_type": "requested",
            "return_reason": reason[:2000],
            "return_attachments_json": json.dumps(files),
            "return_requested_at": now,
            "return_refund_status": None,
        },
        conditions=(Order.return_type.is_(None),),
    )


def accept_return(order: Order, *, admin_notes: str | None = None, actor=None) -> dict:
    """Admin accepts; the refund is settled by the worker once the parcel is picked up."""
    _actor_type, actor_id = parse_actor(actor)
    changes = {
        "return_type": "accepted",
        "return_reviewed_at": datetime.utcnow(),
        "return_reviewed_by": actor_id,
        "return_refund_status": "pending",
        "refund_status": "pending",
    }
    notes = (admin_notes or "").strip()
    if notes:
        changes["return_admin_notes"] = notes[:2000]
    transition = transition_order(
        order,
        OrderStatus.RETURN_ACCEPTED,
        actor=actor,
        reason="return_accepted",
        changes=changes,
        conditions=(Order.return_type == "requested",),
    )
    pickup = create_shipment_for_order(order, direction="return", actor=actor)
    return {"transition": transition, "pickup": pickup}


def deny_return(order: Order, *, admin_notes: str, actor=None):
    notes = (admin_notes or "").strip()
    if not notes:
        raise OrderValidationError("Admin notes are required when denying a return request")
    _actor_type, actor_id = parse_actor(actor)
    return transition_order(
        order,
        OrderStatus.RETURN_REJECTED,
        actor=actor,
        reason="return_denied",
        changes={
            "return_type": "denied",
            "return_reviewed_at": datetime.utcnow(),
            "return_reviewed_by": actor_id,
            "return_admin_notes": notes[:2000],
        },
        conditions=(Order.return_type == "requested",),
    )


def retry_refund(order: Order, *, actor=None) -> Order:
    """Put a failed or stuck refund back in the worker's queue."""
    if (order.status or "").strip().lower() != OrderStatus.RETURN_PICKED_UP:
        raise OrderValidationError("refunds are settled only after the return is picked up")
    current = (order.refund_status or "").strip().lower()
    if current not in ("failed", "processing"):
        raise OrderValidationError(f"refund is not retryable from {current or 'none'}")
    actor_type, actor_id = parse_actor(actor)
    update_order_fields(
        order,
        {
            "refund_status": "pending",
            "return_refund_status": "pending",
            "payment_meta_json": order.payment_meta_with(
                {"type": "refund_retry_requested", "from": current, "actor_type": actor_type, "actor_id": actor_id}
            ),
        },
        conditions=(Order.refund_status == current, Order.status == OrderStatus.RETURN_PICKED_UP),
    )
    log_json("refund_retry_requested", order_id=int(order.id), previous=current, actor_id=actor_id)
    return order
