from __future__ import annotations

import re

CARRIER_STATUSES = ("pending", "booked", "in_transit", "out_for_delivery", "delivered", "rto", "failed")

# Ordered: the first matching rule wins.
_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"out\s*for\s*delivery"), "out_for_delivery"),
    (re.compile(r"\brto\b|return\s+to\s+origin"), "rto"),
    (re.compile(r"undeliver|not\s+delivered"), "failed"),
    (re.compile(r"deliver"), "delivered"),
    (re.compile(r"fail|cancel|lost|damage"), "failed"),
    (re.compile(r"transit|dispatch|arrived|in\s*-?\s*scan|received|forwarded"), "in_transit"),
    (re.compile(r"book|pick\s*-?\s*up|picked\s+up|softdata"), "booked"),
)

_PICKUP_PHRASES = ("picked up", "pickup completed", "pickup done", "pickup successful")


def map_carrier_status(text: str | None) -> str:
    """Map free-text carrier status onto the closed internal vocabulary.

    Unknown or empty text maps to "pending"; this never raises.
    """
    raw = " ".join(str(text or "").lower().split())
    if not raw:
        return "pending"
    for pattern, status in _RULES:
        if pattern.search(raw):
            return status
    return "pending"


def is_pickup_text(text: str | None) -> bool:
    raw = " ".join(str(text or "").lower().split())
    return any(p in raw for p in _PICKUP_PHRASES)
