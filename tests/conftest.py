"""Shared fixtures: Slack's published signing example and a fake response_url."""

import json

import httpx
import pytest
import pytest_asyncio

# Taken from: https://api.slack.com/docs/verifying-requests-from-slack
SLACK_TUTORIAL_SECRET    = "8f742231b10e8888abcd99yyyzzz85a5"
SLACK_TUTORIAL_TIMESTAMP = 1531420618
SLACK_TUTORIAL_SIGNATURE = "v0=a2114d57b48eac39b9ad189dd8316235a7b4a8d21a10bd27519666489c69b503"
SLACK_TUTORIAL_BODY = (
    "token=xyzz0WbapA4vBCDEFasx0q6G&team_id=T1DC2JH3J&team_domain=testteamnow"
    "&channel_id=G8PSS9T3V&channel_name=foobar&user_id=U2CERLKJA&user_name=roadrunner"
    "&command=%2Fwebhook-collect&text=&response_url=https%3A%2F%2Fhooks.slack.com%2Fcommands"
    "%2FT1DC2JH3J%2F397700885554%2F96rGlfmibIGlgcZRskXaIFfN"
    "&trigger_id=398738663015.47445629121.803a0bc887a14d10d2c447fce8b6703c"
)

RESPONSE_URL = "https://hooks.slack.com/commands/T1DC2JH3J/397700885554/96rGlfmibIGlgcZRskXaIFfN"


def fixed_time_now() -> float:
    return float(SLACK_TUTORIAL_TIMESTAMP)


def slack_headers(signature: str = SLACK_TUTORIAL_SIGNATURE, timestamp=SLACK_TUTORIAL_TIMESTAMP) -> dict:
    return {
        "X-Slack-Signature": signature,
        "X-Slack-Request-Timestamp": str(timestamp),
        "Content-Type": "application/x-www-form-urlencoded",
    }


class CallbackRecorder:
    """Stands in for Slack's response_url endpoint."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text="ok")

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def callback_recorder():
    return CallbackRecorder()


@pytest_asyncio.fixture
async def callback_client(callback_recorder):
    async with httpx.AsyncClient(transport=httpx.MockTransport(callback_recorder)) as client:
        yield client
