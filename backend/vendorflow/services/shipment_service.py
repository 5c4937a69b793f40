from __future__ import annotations

import json
import re
from datetime import datetime

from vendorflow.extensions import db
from vendorflow.integrations.carrier.factory import build_carrier_provider
from vendorflow.integrations.common import EXTERNAL_CALL_ERRORS
from vendorflow.models import Order, Vendor
from vendorflow.services.errors import (
    InvalidTransitionError,
    OrderConflictError,
    OrderValidationError,
    TransitionForbiddenError,
)
from vendorflow.services.order_state_service import OrderStatus, transition_order, update_order_fields
from vendorflow.utils.carrier_status import map_carrier_status
from vendorflow.utils.events import log_event
from vendorflow.utils.observability import log_json

AWB_RE = re.compile(r"^[A-Z0-9]{9,12}$")


def _require_owner(order: Order, vendor: Vendor | None) -> None:
    if vendor is None or order.vendor_id is None or int(order.vendor_id) != int(vendor.id):
        raise TransitionForbiddenError("order is not assigned to this vendor")


def normalize_awb(raw) -> str:
    awb = str(raw or "").strip().upper()
    if not AWB_RE.match(awb):
        raise OrderValidationError("Invalid AWB number format. Expected 9-12 alphanumeric characters")
    return awb


def create_shipment_for_order(order: Order, *, direction: str = "forward", actor=None) -> dict:
    """Book a carrier consignment and store its AWB.

    Returns `{awb_number, created, message}`; carrier failures are recorded on
    the order and reported, never raised.
    """
    field = "awb_number" if direction == "forward" else "return_awb_number"
    status_field = "dtdc_status" if direction == "forward" else "return_dtdc_status"
    existing = (getattr(order, field) or "").strip()
    if existing:
        return {"awb_number": existing, "created": False, "message": "shipment already exists"}

    vendor = db.session.get(Vendor, int(order.vendor_id)) if order.vendor_id is not None else None
    origin = vendor.address_dict() if vendor else {}
    try:
        provider = build_carrier_provider()
        result = provider.create_shipment(order=order, origin=origin, direction=direction)
    except EXTERNAL_CALL_ERRORS as e:
        message = str(e)[:300]
        try:
            update_order_fields(
                order,
                {
                    "payment_meta_json": order.payment_meta_with(
                        {"type": "shipment_create_failed", "direction": direction, "error": message}
                    )
                },
                conditions=(getattr(Order, field).is_(None),),
                commit=False,
            )
        except OrderConflictError:
            pass
        log_event(
            "shipment_create_failed",
            actor=actor,
            order_id=int(order.id),
            vendor_id=order.vendor_id,
            severity="WARN",
            metadata={"direction": direction, "error": message},
        )
        db.session.commit()
        log_json("shipment_create_failed", level="warning", order_id=int(order.id), direction=direction, error=message)
        return {"awb_number": None, "created": False, "message": f"shipment creation will be retried: {message}"}

    awb = (result.awb_number or "").strip().upper()
    try:
        update_order_fields(
            order,
            {
                field: awb,
                status_field: "booked",
                "payment_meta_json": order.payment_meta_with(
                    {"type": "shipment_created", "direction": direction, "awb_number": awb, "provider": result.provider}
                ),
            },
            conditions=(getattr(Order, field).is_(None),),
        )
    except OrderConflictError:
        # Someone stored an AWB first; keep theirs.
        db.session.refresh(order)
        return {"awb_number": getattr(order, field), "created": False, "message": "shipment already exists"}
    log_event(
        "shipment_created",
        actor=actor,
        order_id=int(order.id),
        vendor_id=order.vendor_id,
        idempotency_key=f"shipment_created:{int(order.id)}:{direction}:{awb}",
        metadata={"awb_number": awb, "provider": result.provider, "direction": direction},
    )
    db.session.commit()
    return {"awb_number": awb, "created": True, "message": f"shipment created. AWB: {awb}"}


def mark_shipped(order: Order, vendor: Vendor, *, actor=None) -> dict:
    """processing -> shipped, then book the forward shipment if no AWB exists."""
    _require_owner(order, vendor)
    transition = transition_order(
        order,
        OrderStatus.SHIPPED,
        actor=actor,
        reason="vendor_packed",
        conditions=(Order.vendor_id == int(vendor.id),),
    )
    if (order.awb_number or "").strip():
        shipment = {"awb_number": order.awb_number, "created": False, "message": "shipment already exists"}
    else:
        shipment = create_shipment_for_order(order, direction="forward", actor=actor)
    return {"transition": transition, "shipment": shipment}


def mark_delivered(order: Order, *, vendor: Vendor | None = None, actor=None):
    """shipped -> delivered. A second call is a no-op; delivered_at is set once."""
    if vendor is not None:
        _require_owner(order, vendor)
    if (order.status or "").strip().lower() == OrderStatus.DELIVERED:
        return None
    conditions = (Order.vendor_id == int(vendor.id),) if vendor is not None else ()
    return transition_order(order, OrderStatus.DELIVERED, actor=actor, reason="delivered", conditions=conditions)


def vendor_update_status(order: Order, vendor: Vendor, status: str, *, actor=None) -> dict:
    target = (status or "").strip().lower()
    if target == OrderStatus.SHIPPED:
        return mark_shipped(order, vendor, actor=actor)
    if target == OrderStatus.DELIVERED:
        return {"transition": mark_delivered(order, vendor=vendor, actor=actor), "shipment": None}
    raise OrderValidationError("vendors may only set status to shipped or delivered")


def set_awb(order: Order, awb_number, *, actor=None, direction: str = "forward") -> Order:
    """Admin override of the carrier id; the cached tracking snapshot is reset."""
    awb = normalize_awb(awb_number)
    status = (order.status or "").strip().lower()
    if direction == "forward":
        if status not in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            raise InvalidTransitionError(f"awb_not_allowed:{status}")
        values = {"awb_number": awb, "dtdc_status": None, "dtdc_tracking_json": None, "tracking_last_updated": None}
    else:
        if status != OrderStatus.RETURN_ACCEPTED:
            raise InvalidTransitionError(f"return_awb_not_allowed:{status}")
        values = {"return_awb_number": awb, "return_dtdc_status": None, "dtdc_tracking_json": None, "tracking_last_updated": None}
    update_order_fields(order, values, conditions=(Order.status == status,), commit=False)
    log_event(
        "awb_updated",
        actor=actor,
        order_id=int(order.id),
        vendor_id=order.vendor_id,
        metadata={"awb_number": awb, "direction": direction},
    )
    db.session.commit()
    db.session.refresh(order)
    return order


def tracking_awb(order: Order) -> tuple[str | None, str]:
    """The AWB to poll and which leg it belongs to."""
    status = (order.status or "").strip().lower()
    if status == OrderStatus.RETURN_ACCEPTED and (order.return_awb_number or "").strip():
        return order.return_awb_number.strip(), "return"
    awb = (order.awb_number or "").strip()
    return (awb or None), "forward"


def refresh_tracking(order: Order, *, provider=None) -> dict:
    """Poll the carrier once and cache the snapshot. Raises on carrier errors."""
    awb, leg = tracking_awb(order)
    if not awb:
        raise OrderValidationError("AWB number is not set for this order")
    provider = provider or build_carrier_provider()
    result = provider.track(awb)
    mapped = map_carrier_status(result.status_text)
    now = datetime.utcnow()
    values = {
        "dtdc_tracking_json": json.dumps(
            {**result.to_snapshot(), "leg": leg, "mapped_status": mapped, "fetched_at": now.isoformat()},
            default=str,
        ),
        "tracking_last_updated": now,
    }
    status_field = "dtdc_status" if leg == "forward" else "return_dtdc_status"
    changed = (getattr(order, status_field) or "") != mapped
    if changed:
        values[status_field] = mapped
    update_order_fields(order, values, conditions=(Order.status == order.status,))
    return {"awb_number": awb, "leg": leg, "status_text": result.status_text, "mapped_status": mapped, "changed": changed}


def download_label(order: Order, vendor: Vendor | None = None) -> bytes:
    if vendor is not None:
        _require_owner(order, vendor)
    awb = (order.awb_number or "").strip()
    if not awb:
        raise OrderValidationError("no shipment label: AWB not set")
    return build_carrier_provider().download_label(awb)
