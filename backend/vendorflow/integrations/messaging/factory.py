from __future__ import annotations

import os

from vendorflow.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integration_mode,
    setting,
)
from vendorflow.integrations.messaging.base import MessagingProvider
from vendorflow.integrations.messaging.mock_provider import MockMessagingProvider
from vendorflow.integrations.messaging.smtp_provider import SmtpMessagingProvider, smtp_health


def build_messaging_provider(settings=None) -> MessagingProvider:
    mode = integration_mode(settings)
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:messaging")

    provider = (str(setting(settings, "MESSAGING_PROVIDER", "mock") or "mock")).strip().lower()
    if provider == "mock":
        return MockMessagingProvider()
    if provider != "smtp":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:messaging_provider={provider}")

    missing = smtp_health().get("missing", [])
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    try:
        port = int((os.getenv("SMTP_PORT") or "587").strip() or 587)
    except ValueError:
        port = 587
    return SmtpMessagingProvider(
        host=(os.getenv("SMTP_HOST") or "").strip(),
        port=port,
        user=(os.getenv("SMTP_USER") or "").strip(),
        password=(os.getenv("SMTP_PASS") or "").strip(),
        sender=(os.getenv("SMTP_FROM") or "").strip(),
        use_ssl=(os.getenv("SMTP_USE_SSL") or "").strip().lower() in ("1", "true", "yes"),
        fcm_server_key=(os.getenv("FCM_SERVER_KEY") or "").strip(),
    )


def messaging_health(settings=None) -> dict:
    mode = integration_mode(settings)
    provider = (str(setting(settings, "MESSAGING_PROVIDER", "mock") or "mock")).strip().lower()
    missing = smtp_health().get("missing", []) if provider == "smtp" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {
        "status": status,
        "mode": mode,
        "provider": provider,
        "push_configured": bool((os.getenv("FCM_SERVER_KEY") or "").strip()),
        "missing": missing,
    }
