from __future__ import annotations

import os

from vendorflow.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integration_mode,
    setting,
)
from vendorflow.integrations.carrier.base import CarrierProvider
from vendorflow.integrations.carrier.mock_provider import MockCarrierProvider
from vendorflow.integrations.carrier.dtdc_provider import DtdcCarrierProvider, dtdc_health


def build_carrier_provider(settings=None) -> CarrierProvider:
    mode = integration_mode(settings)
    provider = (str(setting(settings, "CARRIER_PROVIDER", "mock") or "mock")).strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:carrier")

    if provider == "mock":
        return MockCarrierProvider()

    if provider != "dtdc":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:carrier_provider={provider}")

    missing = dtdc_health().get("missing", [])
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")

    return DtdcCarrierProvider(
        tracking_credentials=(os.getenv("DTDC_TRACKING_CREDENTIALS") or "").strip(),
        api_key=(os.getenv("DTDC_API_KEY") or "").strip(),
        customer_code=(os.getenv("DTDC_CUSTOMER_CODE") or "").strip(),
        environment=(os.getenv("DTDC_ENVIRONMENT") or "production").strip(),
        booking_url=(os.getenv("DTDC_BOOKING_URL") or "").strip(),
        label_url=(os.getenv("DTDC_LABEL_URL") or "").strip(),
    )


def carrier_health(settings=None) -> dict:
    mode = integration_mode(settings)
    provider = (str(setting(settings, "CARRIER_PROVIDER", "mock") or "mock")).strip().lower()
    missing = dtdc_health().get("missing", []) if provider == "dtdc" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
