"""
Error reporting through Sentry.

Failures inside deferred work (background orchestration, callback delivery,
AWS lookups) never reach the HTTP caller, so they are pushed here in
addition to the log.
"""

from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from slash_infra.utils.logger import logger


def init_error_reporting(dsn: str, environment: str) -> bool:
    """
    Configure the Sentry SDK.

    Returns False (and leaves reporting disabled) when no DSN is configured,
    in which case report_exception only reaches the log.
    """
    if not dsn:
        logger.info("SENTRY_DSN not configured, error reporting disabled")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    logger.info(f"Sentry configured | environment={environment}")
    return True


def report_exception(exc: BaseException, **context: Any) -> None:
    """Send an exception to Sentry with optional extra context."""
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
