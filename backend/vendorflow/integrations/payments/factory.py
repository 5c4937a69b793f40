from __future__ import annotations

import os

from vendorflow.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integration_mode,
    missing_env,
    setting,
)
from vendorflow.integrations.payments.base import PaymentsProvider
from vendorflow.integrations.payments.mock_provider import MockPaymentsProvider
from vendorflow.integrations.payments.razorpay_provider import RazorpayPaymentsProvider


def build_payments_provider(settings=None) -> PaymentsProvider:
    mode = integration_mode(settings)
    provider = (str(setting(settings, "PAYMENTS_PROVIDER", "mock") or "mock")).strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        return MockPaymentsProvider()

    if provider != "razorpay":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    missing = missing_env("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")

    return RazorpayPaymentsProvider(
        key_id=(os.getenv("RAZORPAY_KEY_ID") or "").strip(),
        key_secret=(os.getenv("RAZORPAY_KEY_SECRET") or "").strip(),
    )


def payment_health(settings=None) -> dict:
    mode = integration_mode(settings)
    provider = (str(setting(settings, "PAYMENTS_PROVIDER", "mock") or "mock")).strip().lower()
    missing = missing_env("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET") if provider == "razorpay" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
