from __future__ import annotations

import hashlib
import os

from vendorflow.integrations.payments.base import PaymentsProvider, RefundResult


class MockPaymentsProvider(PaymentsProvider):
    name = "mock"

    def refund(self, *, payment_id: str, amount_minor: int, notes: dict | None = None) -> RefundResult:
        if (os.getenv("MOCK_REFUND_FORCE_FAIL") or "").strip() == "1":
            raise RuntimeError("MOCK_REFUND_FAILED:forced")
        digest = hashlib.sha256(f"{payment_id}:{amount_minor}".encode("utf-8")).hexdigest()[:14]
        return RefundResult(
            refund_id=f"rfnd_mock_{digest}",
            status="processed",
            amount_minor=int(amount_minor),
            provider=self.name,
            raw={"payment_id": payment_id, "notes": notes or {}},
        )
