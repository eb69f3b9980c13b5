"""
Card Reconciliation - Sentry Integration

Error tracking for the reconciliation API. Capturing is a no-op until
init_sentry() has been called with a DSN.
"""

import os
import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

# Card numbers and keys never leave the process
SENSITIVE_KEYS = [
    "password", "token", "secret", "api_key", "authorization",
    "card_number", "masked_card_number", "cookie"
]


def init_sentry(
    dsn: Optional[str] = None,
    environment: str = "development",
    release: Optional[str] = None,
    traces_sample_rate: float = 0.0,
) -> bool:
    """
    Initialize Sentry error tracking.

    Args:
        dsn: Sentry DSN (from environment if not provided)
        environment: Environment name (production, staging, development)
        release: Release version
        traces_sample_rate: Performance tracing sample rate

    Returns:
        True if Sentry was initialized, False otherwise
    """
    dsn = dsn or os.environ.get("SENTRY_DSN", "")

    if not dsn:
        logger.info("Sentry DSN not configured. Error tracking disabled.")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release or os.environ.get("GIT_SHA", "unknown"),
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            ),
        ],
        send_default_pii=False,
        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized for environment: {environment}")
    return True


def _redact(d: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in d.items():
        if any(s in key.lower() for s in SENSITIVE_KEYS):
            result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = _redact(value)
        elif isinstance(value, list):
            result[key] = [_redact(v) if isinstance(v, dict) else v for v in value]
        else:
            result[key] = value
    return result


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Filter sensitive data from Sentry events."""
    request = event.get("request")
    if isinstance(request, dict):
        for part in ("headers", "data"):
            if isinstance(request.get(part), dict):
                request[part] = _redact(request[part])

    if isinstance(event.get("extra"), dict):
        event["extra"] = _redact(event["extra"])

    return event


def capture_exception(exception: Exception, **kwargs) -> Optional[str]:
    """
    Capture an exception to Sentry.

    Args:
        exception: The exception to capture
        **kwargs: Additional context

    Returns:
        Event ID if captured, None otherwise
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)


def set_tag(key: str, value: str):
    """Set a tag for Sentry."""
    sentry_sdk.set_tag(key, value)
