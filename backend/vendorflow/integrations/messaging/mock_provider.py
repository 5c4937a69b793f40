from __future__ import annotations

import os

from vendorflow.integrations.messaging.base import MessagingProvider, MessageResult


class MockMessagingProvider(MessagingProvider):
    name = "mock"

    def _force_failure(self, message: str) -> bool:
        msg = (message or "").lower()
        return "[fail]" in msg or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_email(self, *, to: str, subject: str, html: str, text: str = "") -> MessageResult:
        if self._force_failure(subject):
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "subject": subject})

    def send_push(self, *, tokens: list[str], title: str, body: str, data: dict | None = None) -> MessageResult:
        if self._force_failure(title):
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message="mock forced failure")
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"tokens": len(tokens or []), "data": data or {}})
