from __future__ import annotations

from html import escape

# stage key -> notification type
STAGE_TYPES = {
    "status:confirmed": "order_confirmed",
    "status:processing": "order_processing",
    "status:shipped": "order_shipped",
    "status:delivered": "order_delivered",
    "status:cancelled": "order_cancelled",
    "status:admin_review_required": "order_admin_review",
    "status:return_requested": "return_requested",
    "status:return_accepted": "return_accepted",
    "status:return_rejected": "return_denied",
    "status:return_picked_up": "return_picked_up",
    "refund:processing": "refund_processing",
    "refund:completed": "refund_completed",
    "refund:failed": "refund_failed",
    "order:available": "new_order_available",
    "order:assigned": "order_assigned",
}

# stage key -> audiences, resolved to individual users by the dispatcher
STAGE_AUDIENCE = {
    "status:confirmed": ("customer",),
    "status:processing": ("customer", "admin"),
    "status:shipped": ("customer", "vendor"),
    "status:delivered": ("customer", "vendor"),
    "status:cancelled": ("customer", "vendor"),
    "status:admin_review_required": ("admin",),
    "status:return_requested": ("admin", "vendor"),
    "status:return_accepted": ("customer", "vendor"),
    "status:return_rejected": ("customer", "vendor"),
    "status:return_picked_up": ("customer", "vendor"),
    "refund:processing": ("customer",),
    "refund:completed": ("customer", "vendor"),
    "refund:failed": ("customer", "admin"),
    "order:available": ("available_vendors",),
    "order:assigned": ("vendor",),
}

_COPY = {
    "status:confirmed": ("Order confirmed", "Order {n} has been confirmed."),
    "status:processing": ("Order being prepared", "Order {n} was accepted by a seller and is being packed."),
    "status:shipped": ("Order shipped", "Order {n} is on its way."),
    "status:delivered": ("Order delivered", "Order {n} was delivered."),
    "status:cancelled": ("Order cancelled", "Order {n} was cancelled."),
    "status:admin_review_required": ("Order needs review", "Order {n} has no seller and needs an admin decision."),
    "status:return_requested": ("Return requested", "A return was requested for order {n}."),
    "status:return_accepted": ("Return accepted", "The return for order {n} was accepted. A pickup will be arranged."),
    "status:return_rejected": ("Return denied", "The return for order {n} was denied."),
    "status:return_picked_up": ("Return picked up", "The return for order {n} was picked up."),
    "refund:processing": ("Refund in progress", "We are processing the refund for order {n}."),
    "refund:completed": ("Refund completed", "The refund for order {n} is complete."),
    "refund:failed": ("Refund failed", "The refund for order {n} could not be completed. Our team will follow up."),
    "order:available": ("New order available", "Order {n} is available to accept."),
    "order:assigned": ("Order assigned", "Order {n} was assigned to you by an admin."),
}


def base_stage(stage_key: str) -> str:
    """`order:available:<id>` style keys share the copy of their prefix."""
    key = (stage_key or "").strip()
    for prefix in ("order:available", "order:assigned"):
        if key.startswith(prefix):
            return prefix
    return key


def stage_type(stage_key: str) -> str:
    return STAGE_TYPES.get(base_stage(stage_key), "order_update")


def stage_audience(stage_key: str) -> tuple[str, ...]:
    return STAGE_AUDIENCE.get(base_stage(stage_key), ())


def render_stage(stage_key: str, order) -> dict:
    title, body = _COPY.get(base_stage(stage_key), ("Order update", "Order {n} was updated."))
    message = body.format(n=order.order_number)
    html = f"<p>{escape(message)}</p><p>Order: <strong>{escape(order.order_number)}</strong></p>"
    return {"title": title, "message": message, "subject": f"{title}: {order.order_number}", "html": html}
