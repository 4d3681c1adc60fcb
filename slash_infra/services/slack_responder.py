import json

import httpx

from slash_infra.models.slack import RESPONSE_EPHEMERAL, RESPONSE_IN_CHANNEL, Response
from slash_infra.utils.error_reporting import report_exception
from slash_infra.utils.logger import logger

CALLBACK_TIMEOUT = 10  # seconds


class PayloadEncodingError(RuntimeError):
    """A response could not be serialised to JSON. Always a bug, never user input."""


class DeliveryError(Exception):
    """Slack's response_url rejected the message or could not be reached."""


def create_http_client() -> httpx.AsyncClient:
    """The one client shared by every callback delivery in the process."""
    return httpx.AsyncClient(timeout=CALLBACK_TIMEOUT)


class MessageResponder:
    """
    Posts delayed responses back to Slack via a command's response_url.

    Why delayed?
    Slack requires an HTTP 200 within 3 seconds of receiving the slash command.
    Anything slower is acknowledged straight away and the real result is
    posted here afterwards.

    response_type:
        ephemeral  — only visible to the user who ran the command
        in_channel — visible to everyone in the channel

    Delivery is a single best-effort attempt: failures are logged and
    reported, never retried and never raised.
    """

    def __init__(self, response_url: str, client: httpx.AsyncClient) -> None:
        self.response_url = response_url
        self.client = client

    async def ephemeral_response(self, response: Response) -> bool:
        return await self._post(response.model_copy(update={"response_type": RESPONSE_EPHEMERAL}))

    async def public_response(self, response: Response) -> bool:
        return await self._post(response.model_copy(update={"response_type": RESPONSE_IN_CHANNEL}))

    async def _post(self, response: Response) -> bool:
        body = encode_payload(response)

        try:
            api_resp = await self.client.post(
                self.response_url,
                content=body,
                headers={"Content-Type": "application/json"},
            )
            if api_resp.is_error:
                raise DeliveryError(
                    f"response_url returned HTTP {api_resp.status_code}: {api_resp.text[:200]}"
                )
        except (httpx.HTTPError, DeliveryError) as exc:
            logger.error(
                f"Failed to send delayed Slack response | "
                f"response_type={response.response_type} error={exc}"
            )
            report_exception(exc, response_type=response.response_type)
            return False

        logger.info(
            f"Delayed Slack response sent | "
            f"response_type={response.response_type} status={api_resp.status_code}"
        )
        return True


def encode_payload(response: Response) -> bytes:
    try:
        return json.dumps(response.to_payload()).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise PayloadEncodingError(f"could not encode Slack response: {exc}") from exc
