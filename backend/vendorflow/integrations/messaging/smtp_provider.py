from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage

import requests

from vendorflow.integrations.messaging.base import MessagingProvider, MessageResult


FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"


class SmtpMessagingProvider(MessagingProvider):
    """Email over SMTP, push over FCM when a server key is configured."""

    name = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str = "",
        password: str = "",
        sender: str = "",
        use_ssl: bool = False,
        fcm_server_key: str = "",
    ):
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        self.sender = sender or user or "no-reply@vendorflow.local"
        self.use_ssl = bool(use_ssl)
        self.fcm_server_key = fcm_server_key

    def send_email(self, *, to: str, subject: str, html: str, text: str = "") -> MessageResult:
        if not (to or "").strip():
            return MessageResult(ok=False, code="EMAIL_NO_RECIPIENT", message="missing recipient")
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(text or subject)
        msg.add_alternative(html, subtype="html")
        try:
            smtp_cls = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
            with smtp_cls(self.host, self.port, timeout=10) as server:
                server.ehlo()
                if not self.use_ssl:
                    try:
                        server.starttls()
                    except smtplib.SMTPException:
                        pass
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
            return MessageResult(ok=True, code="OK", message="sent")
        except (smtplib.SMTPException, OSError) as e:
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message=str(e)[:200])

    def send_push(self, *, tokens: list[str], title: str, body: str, data: dict | None = None) -> MessageResult:
        tokens = [t for t in (tokens or []) if t]
        if not tokens:
            return MessageResult(ok=False, code="PUSH_NO_TOKENS", message="no push tokens")
        if not self.fcm_server_key:
            return MessageResult(ok=False, code="PUSH_NOT_CONFIGURED", message="FCM_SERVER_KEY not set")
        payload = {
            "registration_ids": tokens,
            "notification": {"title": title, "body": body},
            "data": {str(k): str(v) for k, v in (data or {}).items()},
        }
        try:
            r = requests.post(
                FCM_SEND_URL,
                json=payload,
                headers={"Authorization": f"key={self.fcm_server_key}"},
                timeout=12,
            )
            j = r.json() if r.content else {}
            if 200 <= r.status_code < 300:
                return MessageResult(ok=True, code="OK", message="sent", raw=j if isinstance(j, dict) else {"payload": j})
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message=f"http_{r.status_code}")
        except requests.Timeout:
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message=str(e)[:200])


def smtp_health() -> dict:
    missing = []
    if not (os.getenv("SMTP_HOST") or "").strip():
        missing.append("SMTP_HOST")
    return {"missing": missing}
