from __future__ import annotations

import os
from dataclasses import dataclass

import requests
from flask import current_app, has_app_context

INTEGRATION_MODES = ("disabled", "sandbox", "live")


@dataclass
class IntegrationResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


# Failures of an outbound call that never roll back the local change that triggered it.
EXTERNAL_CALL_ERRORS = (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    requests.RequestException,
    RuntimeError,
    ValueError,
)


def setting(settings, key: str, default=None):
    """Read an integration setting from an explicit mapping, the app config, or the env."""
    if settings is not None:
        if isinstance(settings, dict):
            if key in settings:
                return settings[key]
        elif hasattr(settings, key):
            return getattr(settings, key)
    if has_app_context() and key in current_app.config:
        return current_app.config.get(key)
    raw = os.getenv(key)
    return raw if raw is not None else default


def integration_mode(settings=None) -> str:
    mode = (str(setting(settings, "INTEGRATIONS_MODE", "sandbox") or "sandbox")).strip().lower()
    return mode if mode in INTEGRATION_MODES else "disabled"


def missing_env(*names: str) -> list[str]:
    return [n for n in names if not (os.getenv(n) or "").strip()]
