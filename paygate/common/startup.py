"""Startup-time helpers for safe config logging."""

import os

from paygate.common.config import PLACEHOLDER_SECRET_KEYS, GatewayConfig
from paygate.common.logging import logger, mask_secret


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"]):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def check_gateway_config(config: GatewayConfig) -> list[str]:
    """Log gateway misconfiguration without halting the process.

    Returns the list of detected issues; payments with a bad key will fail at
    call time with `Unauthorized`.
    """

    issues: list[str] = []
    if not config.secret_key or config.secret_key in PLACEHOLDER_SECRET_KEYS:
        issues.append("LIPILA_SECRET_KEY is missing or a placeholder value")
    if not config.base_url:
        issues.append("LIPILA_BASE_URL is not configured")

    if issues:
        logger.critical(
            "gateway misconfigured, real payments will fail issues=%s key_prefix=%s",
            issues,
            mask_secret(config.secret_key),
        )
    elif config.mock_mode:
        logger.warning("gateway mock mode ENABLED, no real money will be charged")
    else:
        logger.info(
            "gateway configured base_url=%s currency=%s key_prefix=%s",
            config.base_url,
            config.currency,
            mask_secret(config.secret_key),
        )
    return issues
