import hashlib
import hmac
import re
import time
from typing import Callable

from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from slash_infra.utils.logger import logger

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
SLACK_SIGNATURE_VERSION = "v0"
SLACK_WEBHOOK_ALLOWED_DELAY = 10 * 60  # seconds

_DECIMAL_TIMESTAMP = re.compile(r"[0-9]{1,18}")

Clock = Callable[[], float]


def compute_slack_signature(secret: str, timestamp: str, body: bytes) -> str:
    """v0=<hex HMAC-SHA256 of "v0:{timestamp}:{body}">"""
    base_string = f"{SLACK_SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(secret.encode(), base_string, hashlib.sha256).hexdigest()
    return f"{SLACK_SIGNATURE_VERSION}={digest}"


def is_request_timestamp_recent(
    timestamp: str, now: float, max_age: int = SLACK_WEBHOOK_ALLOWED_DELAY
) -> bool:
    """
    True if the request was signed less than max_age seconds ago.

    Anything that isn't a plain decimal integer is rejected rather than being
    read as the epoch.
    """
    if not _DECIMAL_TIMESTAMP.fullmatch(timestamp):
        return False

    return int(timestamp) > now - max_age


def is_request_signature_valid(secret: str, signature: str, timestamp: str, body: bytes) -> bool:
    expected = compute_slack_signature(secret, timestamp, body)
    # compare_digest on bytes: str arguments must be ASCII-only
    return hmac.compare_digest(expected.encode(), signature.encode("utf-8", "replace"))


class VerifySlackSignatureMiddleware:
    """
    Validates every inbound request under `path_prefix` came from Slack.

    Slack signs requests with HMAC-SHA256 using your Signing Secret.
    Steps:
      1. Read the raw body (needed to recompute the signature).
      2. Check the timestamp is recent  →  replay-attack prevention.
      3. Recompute expected signature and compare in constant time.
      4. Replay the body to the downstream app so it can be parsed again.

    Responds 400 if the body can't be read, 401 on any verification failure;
    the wrapped app is not called in either case.
    """

    def __init__(
        self,
        app: ASGIApp,
        signing_secret: str,
        clock: Clock = time.time,
        max_age: int = SLACK_WEBHOOK_ALLOWED_DELAY,
        path_prefix: str = "/slack",
    ) -> None:
        self.app = app
        self.signing_secret = signing_secret
        self.clock = clock
        self.max_age = max_age
        self.path_prefix = path_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(self.path_prefix):
            await self.app(scope, receive, send)
            return

        raw_body = await self._read_body(receive)
        if raw_body is None:
            logger.warning(f"Could not read Slack request body | path={scope['path']}")
            await PlainTextResponse("could not read request body", status_code=400)(scope, receive, send)
            return

        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope["headers"]}
        signature = headers.get(SLACK_SIGNATURE_HEADER.lower(), "")
        timestamp = headers.get(SLACK_TIMESTAMP_HEADER.lower(), "")

        if not is_request_timestamp_recent(timestamp, self.clock(), self.max_age):
            logger.warning(f"Slack request timestamp too old | timestamp={timestamp!r}")
            await PlainTextResponse("request too old", status_code=401)(scope, receive, send)
            return

        if not is_request_signature_valid(self.signing_secret, signature, timestamp, raw_body):
            logger.warning(f"Slack signature mismatch | path={scope['path']}")
            await PlainTextResponse("signature invalid", status_code=401)(scope, receive, send)
            return

        await self.app(scope, self._replay(raw_body, receive), send)

    @staticmethod
    async def _read_body(receive: Receive) -> "bytes | None":
        chunks = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return None
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                return b"".join(chunks)

    @staticmethod
    def _replay(raw_body: bytes, receive: Receive) -> Receive:
        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if replayed:
                # Anything after the body (e.g. http.disconnect) comes from the client
                return await receive()
            replayed = True
            return {"type": "http.request", "body": raw_body, "more_body": False}

        return replay_receive
