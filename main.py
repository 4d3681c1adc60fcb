import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import uvicorn
from fastapi import FastAPI

from slash_infra.middleware.verify_slack import VerifySlackSignatureMiddleware
from slash_infra.routes.slack import router as slack_router
from slash_infra.services.delayed_response import drain_pending
from slash_infra.services.ec2_resolver import EC2Resolver, Resolver
from slash_infra.services.slack_responder import create_http_client
from slash_infra.utils.config import (
    PENDING_GRACE_PERIOD,
    PORT,
    SENTRY_DSN,
    SENTRY_ENVIRONMENT,
    SLACK_REQUEST_MAX_AGE,
    SLACK_SIGNING_SECRET,
)
from slash_infra.utils.error_reporting import init_error_reporting
from slash_infra.utils.logger import logger

SHUTDOWN_DRAIN_TIMEOUT = 5  # seconds


def create_app(
    signing_secret: str,
    resolver: Optional[Resolver] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], float] = time.time,
    grace_period: float = PENDING_GRACE_PERIOD,
) -> FastAPI:
    """
    Builds the service.

    Collaborators that aren't passed in are created at startup: the shared
    callback HTTP client and an EC2 resolver configured from the environment.
    """
    if not signing_secret:
        logger.warning("SLACK_SIGNING_SECRET is empty, every Slack request will be rejected")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_error_reporting(SENTRY_DSN, SENTRY_ENVIRONMENT)
        owns_client = app.state.http_client is None
        if owns_client:
            app.state.http_client = create_http_client()
        if app.state.resolver is None:
            app.state.resolver = EC2Resolver.from_env()

        yield

        await drain_pending(SHUTDOWN_DRAIN_TIMEOUT)
        if owns_client:
            await app.state.http_client.aclose()

    app = FastAPI(
        title="slash-infra",
        description="Slack slash command for looking up infrastructure resources",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.resolver = resolver
    app.state.http_client = http_client
    app.state.grace_period = grace_period

    # Routes
    app.include_router(slack_router)   # /slack/infra-search  (Slack slash command)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    # Everything under /slack must carry a valid Slack signature
    app.add_middleware(
        VerifySlackSignatureMiddleware,
        signing_secret=signing_secret,
        clock=clock,
        max_age=SLACK_REQUEST_MAX_AGE,
    )
    return app


app = create_app(SLACK_SIGNING_SECRET)


# Entry point
if __name__ == "__main__":
    logger.info(f"Starting slash-infra service on port {PORT}")
    uvicorn.run("main:app", host="0.0.0.0", port=PORT)
