from __future__ import annotations

ACTOR_TYPES = ("customer", "vendor", "admin", "system")

SYSTEM_ACTOR = {"type": "system", "id": None}


def parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        actor_type = str(actor.get("type") or "system").strip().lower()
        if actor_type not in ACTOR_TYPES:
            actor_type = "system"
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except Exception:
            actor_id = None
        return actor_type, actor_id
    return "system", None


def actor_for(user) -> dict:
    """Actor dict for an authenticated user, keyed by role."""
    if user is None:
        return dict(SYSTEM_ACTOR)
    role = (getattr(user, "role", None) or "customer").strip().lower()
    if role not in ACTOR_TYPES or role == "system":
        role = "customer"
    return {"type": role, "id": int(user.id)}
