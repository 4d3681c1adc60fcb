from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qs

from pydantic import BaseModel, ConfigDict, Field as PydanticField

RESPONSE_IN_CHANNEL = "in_channel"   # visible to everyone in the channel
RESPONSE_EPHEMERAL  = "ephemeral"    # visible only to the user who typed the command


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

class SlashCommandRequest(BaseModel):
    """
    The payload Slack sends when a user invokes a slash command.

        command      — the command that was typed  e.g. /infra
        team_* / enterprise_* / channel_*
                     — where in Slack the user was when they ran it
        user_id      — Slack user ID of the person who ran the command
        text         — everything after the command
        response_url — one-time URL to post delayed replies to
        trigger_id   — needed to open a dialog within 3s of the request
    """

    model_config = ConfigDict(frozen=True)

    command:         str = ""
    team_id:         str = ""
    team_domain:     str = ""
    enterprise_id:   str = ""
    enterprise_name: str = ""
    channel_id:      str = ""
    channel_name:    str = ""
    user_id:         str = ""
    user_name:       str = ""
    text:            str = ""
    response_url:    str = ""
    trigger_id:      str = ""

    @classmethod
    def from_form_body(cls, raw_body: bytes) -> "SlashCommandRequest":
        """
        Parses an application/x-www-form-urlencoded body.

        Raises ValueError if the body is not valid UTF-8 or not a valid query
        string.
        """
        params = parse_qs(
            raw_body.decode("utf-8"),
            keep_blank_values=True,
            strict_parsing=bool(raw_body),
        )

        def get(key: str) -> str:
            return params.get(key, [""])[0]

        return cls(**{name: get(name) for name in cls.model_fields})


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

class Field(BaseModel):
    title: str = ""
    value: str = ""
    short: bool = False


class Attachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fallback:       str = ""
    text:           str = ""
    markdown_in:    Optional[list[str]] = PydanticField(default=None, alias="mrkdwn_in")
    color:          Optional[str] = None
    author_name:    Optional[str] = None
    author_subname: Optional[str] = None
    author_link:    Optional[str] = None
    author_icon:    Optional[str] = None
    title:          Optional[str] = None
    title_link:     Optional[str] = None
    pretext:        Optional[str] = None
    image_url:      Optional[str] = None
    thumb_url:      Optional[str] = None
    fields:         Optional[list[Field]] = None
    footer:         Optional[str] = None
    footer_icon:    Optional[str] = None
    timestamp:      Optional[int] = PydanticField(default=None, alias="ts")


class Response(BaseModel):
    """
    A message sent back to Slack, either as the immediate reply to the
    webhook or later via response_url.

    response_type is left unset on pending/final responses built by handlers;
    the responder decides the visibility when it delivers them.
    """

    response_type: Optional[str] = None
    text:          str = ""
    attachments:   list[Attachment] = PydanticField(default_factory=list)

    def to_payload(self) -> dict:
        """Slack JSON shape: unset optionals and empty attachments are dropped."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        if not payload.get("attachments"):
            payload.pop("attachments", None)
        return payload


def slack_timestamp(moment: datetime) -> int:
    """Unix epoch seconds suitable for Attachment.timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.astimezone(timezone.utc).timestamp())
