"""Tests for the two-phase slash command reply."""

import asyncio
import json
import time

import httpx
import pytest

from slash_infra.models.slack import Response, SlashCommandRequest
from slash_infra.services import delayed_response
from slash_infra.services.delayed_response import DelayedSlashResponse, HandlerContext, drain_pending

from conftest import RESPONSE_URL, CallbackRecorder

PENDING = Response(text="One second while we look that up...")
FINAL = Response(text="Found it")

COMMAND = SlashCommandRequest(command="/infra", user_id="U2CERLKJA", text="i-0123", response_url=RESPONSE_URL)


def returning(response, delay=0.0):
    async def handler(ctx: HandlerContext, command: SlashCommandRequest) -> Response:
        if delay:
            await asyncio.sleep(delay)
        return response

    return handler


class TestImmediateResponse:
    def test_pending_response_is_the_immediate_reply(self):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL))

        assert reply.immediate_response().to_payload() == {
            "response_type": "ephemeral",
            "text": "One second while we look that up...",
        }

    def test_show_command_in_channel_replies_with_bare_in_channel_payload(self):
        reply = DelayedSlashResponse(
            pending_response=PENDING, handler=returning(FINAL), show_slash_command_in_channel=True
        )

        assert reply.immediate_response().to_payload() == {"response_type": "in_channel", "text": ""}

    @pytest.mark.asyncio
    async def test_run_returns_without_waiting_for_handler(self, callback_client):
        never = asyncio.Event()

        async def stalled(ctx, command):
            await never.wait()

        reply = DelayedSlashResponse(pending_response=PENDING, handler=stalled)

        started = time.perf_counter()
        http_response = reply.run(COMMAND, callback_client)
        elapsed = time.perf_counter() - started

        assert elapsed < 0.05
        assert http_response.status_code == 200
        assert json.loads(http_response.body) == {
            "response_type": "ephemeral",
            "text": "One second while we look that up...",
        }

        await drain_pending(timeout=0)


class TestOrchestration:
    @pytest.mark.asyncio
    async def test_fast_handler_sends_only_the_final_response(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL), grace_period=0.5)

        await reply.start(COMMAND, callback_client)

        assert callback_recorder.payloads == [{"response_type": "ephemeral", "text": "Found it"}]

    @pytest.mark.asyncio
    async def test_fast_handler_does_not_wait_for_grace_period(self, callback_client):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL), grace_period=5)

        started = time.perf_counter()
        await reply.start(COMMAND, callback_client)

        assert time.perf_counter() - started < 1

    @pytest.mark.asyncio
    async def test_slow_handler_sends_pending_notice_then_final(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(
            pending_response=PENDING,
            handler=returning(FINAL, delay=0.2),
            public_result=True,
            grace_period=0.05,
        )

        await reply.start(COMMAND, callback_client)

        assert callback_recorder.payloads == [
            {"response_type": "ephemeral", "text": "One second while we look that up..."},
            {"response_type": "in_channel", "text": "Found it"},
        ]

    @pytest.mark.asyncio
    async def test_pending_notice_is_sent_only_once_for_very_slow_handler(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(
            pending_response=PENDING, handler=returning(FINAL, delay=0.3), grace_period=0.02
        )

        await reply.start(COMMAND, callback_client)

        texts = [p["text"] for p in callback_recorder.payloads]
        assert texts == ["One second while we look that up...", "Found it"]

    @pytest.mark.asyncio
    async def test_callbacks_go_to_response_url_as_json(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL))

        await reply.start(COMMAND, callback_client)

        request = callback_recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == RESPONSE_URL
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_handler_receives_context_and_command(self, callback_client):
        seen = []

        async def handler(ctx, command):
            seen.append((ctx, command))
            return FINAL

        reply = DelayedSlashResponse(pending_response=PENDING, handler=handler)
        await reply.start(COMMAND, callback_client)

        ctx, command = seen[0]
        assert isinstance(ctx, HandlerContext)
        assert ctx.request_id
        assert ctx.deadline is None
        assert command is COMMAND

    @pytest.mark.asyncio
    async def test_handler_returning_none_sends_nothing_final(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(None))

        await reply.start(COMMAND, callback_client)

        assert callback_recorder.payloads == []


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_handler_exception_is_caught_and_reported(self, callback_client, callback_recorder, monkeypatch):
        reported = []
        monkeypatch.setattr(delayed_response, "report_exception", lambda exc, **ctx: reported.append((exc, ctx)))

        async def broken(ctx, command):
            raise RuntimeError("upstream exploded")

        reply = DelayedSlashResponse(pending_response=PENDING, handler=broken)
        task = reply.start(COMMAND, callback_client)
        await task

        assert task.exception() is None
        assert callback_recorder.payloads == []
        assert isinstance(reported[0][0], RuntimeError)
        assert reported[0][1]["command"] == "/infra"

    @pytest.mark.asyncio
    async def test_slow_handler_exception_after_pending_notice(self, callback_client, callback_recorder, monkeypatch):
        monkeypatch.setattr(delayed_response, "report_exception", lambda exc, **ctx: None)

        async def broken_later(ctx, command):
            await asyncio.sleep(0.1)
            raise RuntimeError("too slow and broken")

        reply = DelayedSlashResponse(pending_response=PENDING, handler=broken_later, grace_period=0.02)
        task = reply.start(COMMAND, callback_client)
        await task

        assert task.exception() is None
        assert [p["text"] for p in callback_recorder.payloads] == ["One second while we look that up..."]

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_raise(self, monkeypatch):
        from slash_infra.services import slack_responder

        reported = []
        monkeypatch.setattr(slack_responder, "report_exception", lambda exc, **ctx: reported.append(exc))

        recorder = CallbackRecorder(status_code=500)
        async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
            reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL))
            task = reply.start(COMMAND, client)
            await task

        assert task.exception() is None
        # one attempt, no retry
        assert len(recorder.requests) == 1
        assert len(reported) == 1


class TestDrainPending:
    @pytest.mark.asyncio
    async def test_drain_waits_for_running_orchestrations(self, callback_client, callback_recorder):
        reply = DelayedSlashResponse(pending_response=PENDING, handler=returning(FINAL, delay=0.05), grace_period=1)
        reply.start(COMMAND, callback_client)

        await drain_pending(timeout=2)

        assert [p["text"] for p in callback_recorder.payloads] == ["Found it"]
        assert not delayed_response._pending_tasks

    @pytest.mark.asyncio
    async def test_drain_cancels_orchestrations_past_timeout(self, callback_client):
        never = asyncio.Event()
        handler_cancelled = asyncio.Event()

        async def stalled(ctx, command):
            try:
                await never.wait()
            except asyncio.CancelledError:
                handler_cancelled.set()
                raise

        reply = DelayedSlashResponse(pending_response=PENDING, handler=stalled, grace_period=10)
        task = reply.start(COMMAND, callback_client)
        await asyncio.sleep(0)

        await drain_pending(timeout=0.01)
        await asyncio.wait_for(handler_cancelled.wait(), timeout=1)

        assert task.cancelled()
