from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RefundResult:
    refund_id: str
    status: str
    amount_minor: int
    provider: str
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def refund(self, *, payment_id: str, amount_minor: int, notes: dict | None = None) -> RefundResult:
        raise NotImplementedError
