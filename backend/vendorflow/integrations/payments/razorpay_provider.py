from __future__ import annotations

import requests

from vendorflow.integrations.payments.base import PaymentsProvider, RefundResult


RAZORPAY_BASE = "https://api.razorpay.com/v1"


class RazorpayPaymentsProvider(PaymentsProvider):
    name = "razorpay"

    def __init__(self, *, key_id: str, key_secret: str, base_url: str = RAZORPAY_BASE):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")

    def refund(self, *, payment_id: str, amount_minor: int, notes: dict | None = None) -> RefundResult:
        pid = (payment_id or "").strip()
        if not pid:
            raise ValueError("payment_id required")
        payload = {"amount": int(amount_minor), "notes": {str(k): str(v) for k, v in (notes or {}).items()}}
        r = requests.post(
            f"{self.base_url}/payments/{pid}/refund",
            auth=(self.key_id, self.key_secret),
            json=payload,
            timeout=25,
        )
        j = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            err = j.get("error") if isinstance(j, dict) else None
            msg = (err.get("description") if isinstance(err, dict) else "") or f"HTTP {r.status_code}"
            raise RuntimeError(f"RAZORPAY_REFUND_FAILED:{str(msg).strip()}")
        return RefundResult(
            refund_id=str(j.get("id") or "").strip(),
            status=str(j.get("status") or "").strip().lower(),
            amount_minor=int(j.get("amount") or amount_minor),
            provider=self.name,
            raw=j if isinstance(j, dict) else {"payload": j},
        )
