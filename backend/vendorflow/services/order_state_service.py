from __future__ import annotations

import json
import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from vendorflow.extensions import db
from vendorflow.models import Order, OrderTransition
from vendorflow.services.errors import (
    InvalidTransitionError,
    OrderConflictError,
    OrderNotFoundError,
    TransitionForbiddenError,
)
from vendorflow.services.notification_dispatcher import dispatch_stage_safely
from vendorflow.utils.actors import parse_actor
from vendorflow.utils.events import log_event


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    ADMIN_REVIEW_REQUIRED = "admin_review_required"
    RETURN_REQUESTED = "return_requested"
    RETURN_ACCEPTED = "return_accepted"
    RETURN_REJECTED = "return_rejected"
    RETURN_PICKED_UP = "return_picked_up"

    ALL = (
        PENDING,
        CONFIRMED,
        PROCESSING,
        SHIPPED,
        DELIVERED,
        CANCELLED,
        ADMIN_REVIEW_REQUIRED,
        RETURN_REQUESTED,
        RETURN_ACCEPTED,
        RETURN_REJECTED,
        RETURN_PICKED_UP,
    )
    PRE_SHIPPED = (PENDING, CONFIRMED, PROCESSING, ADMIN_REVIEW_REQUIRED)
    # Unassigned orders a vendor may take, including ones handed back after a vendor cancel.
    CLAIMABLE = (PENDING, CONFIRMED, ADMIN_REVIEW_REQUIRED)

    ALLOWED = {
        PENDING: {CONFIRMED, PROCESSING, ADMIN_REVIEW_REQUIRED, CANCELLED},
        CONFIRMED: {PROCESSING, CANCELLED},
        PROCESSING: {SHIPPED, ADMIN_REVIEW_REQUIRED, PENDING, CANCELLED},
        ADMIN_REVIEW_REQUIRED: {PROCESSING, CANCELLED},
        SHIPPED: {DELIVERED},
        DELIVERED: {RETURN_REQUESTED},
        RETURN_REQUESTED: {RETURN_ACCEPTED, RETURN_REJECTED},
        RETURN_ACCEPTED: {RETURN_PICKED_UP},
        RETURN_REJECTED: set(),
        RETURN_PICKED_UP: set(),
        CANCELLED: set(),
    }

    # Actor types permitted to drive each edge.
    ACTORS = {
        (PENDING, CONFIRMED): {"admin"},
        (PENDING, PROCESSING): {"vendor", "admin"},
        (CONFIRMED, PROCESSING): {"vendor", "admin"},
        (ADMIN_REVIEW_REQUIRED, PROCESSING): {"vendor", "admin"},
        (PROCESSING, SHIPPED): {"vendor"},
        (SHIPPED, DELIVERED): {"vendor", "system"},
        (PROCESSING, ADMIN_REVIEW_REQUIRED): {"vendor"},
        (PENDING, ADMIN_REVIEW_REQUIRED): {"system"},
        (PROCESSING, PENDING): {"system"},
        (PENDING, CANCELLED): {"admin"},
        (CONFIRMED, CANCELLED): {"admin"},
        (PROCESSING, CANCELLED): {"admin"},
        (ADMIN_REVIEW_REQUIRED, CANCELLED): {"admin"},
        (DELIVERED, RETURN_REQUESTED): {"customer"},
        (RETURN_REQUESTED, RETURN_ACCEPTED): {"admin"},
        (RETURN_REQUESTED, RETURN_REJECTED): {"admin"},
        (RETURN_ACCEPTED, RETURN_PICKED_UP): {"system"},
    }


def _normalize(status: str | None) -> str:
    return (status or "").strip().lower()


def can_transition(from_status: str, to_status: str, actor_type: str) -> bool:
    current = _normalize(from_status)
    target = _normalize(to_status)
    if target not in OrderStatus.ALLOWED.get(current, set()):
        return False
    return actor_type in OrderStatus.ACTORS.get((current, target), set())


def transition_order(
    order: Order,
    to_status: str,
    *,
    actor=None,
    idempotency_key: str | None = None,
    reason: str = "",
    changes: dict | None = None,
    conditions: tuple = (),
    metadata: dict | None = None,
    notify: bool = True,
) -> OrderTransition | None:
    """Apply one status change as a single conditioned UPDATE.

    Returns the stored transition, the earlier one when `idempotency_key`
    was already used, or None when the order is already in `to_status`.
    Raises InvalidTransitionError / TransitionForbiddenError before writing,
    and OrderConflictError when the row changed underneath the caller.
    """
    if order is None:
        raise OrderNotFoundError("order not found")

    key = (idempotency_key or "").strip()[:160]
    if key:
        existing = OrderTransition.query.filter_by(order_id=int(order.id), idempotency_key=key).first()
        if existing:
            return existing

    current = _normalize(order.status)
    target = _normalize(to_status)
    if target == current:
        return None
    if target not in OrderStatus.ALLOWED.get(current, set()):
        raise InvalidTransitionError(f"invalid_order_transition {current}->{target}")

    actor_type, actor_id = parse_actor(actor)
    if actor_type not in OrderStatus.ACTORS.get((current, target), set()):
        raise TransitionForbiddenError(f"{actor_type} may not move order {current}->{target}")

    guards = list(conditions or ())
    if target == OrderStatus.PROCESSING:
        if _normalize(order.payment_status) != "paid":
            raise InvalidTransitionError("payment_not_captured")
        guards.append(Order.payment_status == "paid")

    now = datetime.utcnow()
    values = {"status": target, "updated_at": now}
    values.update(changes or {})
    if target == OrderStatus.DELIVERED:
        values["delivered_at"] = func.coalesce(Order.delivered_at, now)

    rows = (
        Order.query.filter(Order.id == int(order.id), Order.status == current, *guards)
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        db.session.rollback()
        raise OrderConflictError(f"order {int(order.id)} changed before {current}->{target} could apply")

    if not key:
        key = f"{actor_type}:{actor_id if actor_id is not None else 'system'}:{current}->{target}:{uuid.uuid4().hex[:12]}"
    row = OrderTransition(
        order_id=int(order.id),
        from_status=current,
        to_status=target,
        actor_type=actor_type[:32],
        actor_id=actor_id,
        idempotency_key=key,
        reason=(reason or "")[:240],
        metadata_json=json.dumps(metadata or {}, default=str)[:4000],
        created_at=now,
    )
    db.session.add(row)
    log_event(
        "order_transition",
        actor=actor,
        order_id=int(order.id),
        vendor_id=values.get("vendor_id", order.vendor_id),
        idempotency_key=f"order_transition:{int(order.id)}:{key}",
        metadata={"from": current, "to": target, "reason": reason or ""},
    )
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = OrderTransition.query.filter_by(order_id=int(order.id), idempotency_key=key).first()
        if existing:
            return existing
        raise OrderConflictError(f"order {int(order.id)} transition could not be recorded")

    db.session.refresh(order)
    if notify:
        dispatch_stage_safely(order, f"status:{target}")
    return row


def update_order_fields(order: Order, values: dict, *, conditions: tuple = (), commit: bool = True) -> Order:
    """Conditioned non-status write; raises OrderConflictError when no row matches."""
    if order is None:
        raise OrderNotFoundError("order not found")
    payload = dict(values or {})
    payload.setdefault("updated_at", datetime.utcnow())
    rows = (
        Order.query.filter(Order.id == int(order.id), *conditions)
        .update(payload, synchronize_session=False)
    )
    if rows != 1:
        db.session.rollback()
        raise OrderConflictError(f"order {int(order.id)} changed before update could apply")
    if commit:
        db.session.commit()
        db.session.refresh(order)
    return order


def get_order_or_404(order_id: int) -> Order:
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise OrderNotFoundError("order not found")
    return order
