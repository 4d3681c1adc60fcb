import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx
from fastapi.responses import JSONResponse

from slash_infra.models.slack import RESPONSE_EPHEMERAL, RESPONSE_IN_CHANNEL, Response, SlashCommandRequest
from slash_infra.services.slack_responder import MessageResponder
from slash_infra.utils.error_reporting import report_exception
from slash_infra.utils.logger import logger

DEFAULT_GRACE_PERIOD = 0.7  # seconds

# Orchestrations still running. Holding the task keeps it from being
# garbage collected before it finishes.
_pending_tasks: set[asyncio.Task] = set()


@dataclass(frozen=True)
class HandlerContext:
    """
    Per-invocation values passed to a handler.

    deadline is a time.monotonic() value or None. Nothing enforces it yet.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)
    deadline: Optional[float] = None


Handler = Callable[[HandlerContext, SlashCommandRequest], Awaitable[Response]]


@dataclass
class DelayedSlashResponse:
    """
    Two-phase reply to a slash command.

    pending_response
        Shown to the user while the handler runs. Returned as the immediate
        webhook reply, and posted again to response_url if the handler is
        still busy after grace_period seconds.
    show_slash_command_in_channel
        By default Slack treats slash commands as ephemeral and hides the
        invocation from channel history. When set, the immediate reply is a
        bare in_channel response so the original command stays visible.
    public_result
        Deliver the handler's response in_channel instead of ephemeral.
    """

    pending_response: Response
    handler: Handler
    show_slash_command_in_channel: bool = False
    public_result: bool = False
    grace_period: float = DEFAULT_GRACE_PERIOD

    def run(self, command: SlashCommandRequest, client: httpx.AsyncClient) -> JSONResponse:
        """
        Starts the handler in the background and returns the webhook reply
        without waiting for it.
        """
        self.start(command, client)
        return JSONResponse(self.immediate_response().to_payload())

    def immediate_response(self) -> Response:
        if self.show_slash_command_in_channel:
            return Response(response_type=RESPONSE_IN_CHANNEL)
        return self.pending_response.model_copy(update={"response_type": RESPONSE_EPHEMERAL})

    def start(self, command: SlashCommandRequest, client: httpx.AsyncClient) -> asyncio.Task:
        ctx = HandlerContext()
        responder = MessageResponder(command.response_url, client)

        task = asyncio.create_task(
            self._run_handler(ctx, command, responder),
            name=f"slash-command-{ctx.request_id}",
        )
        _pending_tasks.add(task)
        task.add_done_callback(_pending_tasks.discard)
        return task

    async def _run_handler(
        self, ctx: HandlerContext, command: SlashCommandRequest, responder: MessageResponder
    ) -> None:
        # Nothing raised in here may escape: the webhook has already been answered
        try:
            await self._orchestrate(ctx, command, responder)
        except Exception as exc:
            logger.exception(
                f"Slash command handler failed | request_id={ctx.request_id} "
                f"command={command.command} user_id={command.user_id}"
            )
            report_exception(
                exc,
                request_id=ctx.request_id,
                command=command.command,
                user_id=command.user_id,
            )

    async def _orchestrate(
        self, ctx: HandlerContext, command: SlashCommandRequest, responder: MessageResponder
    ) -> None:
        handler_task = asyncio.ensure_future(self.handler(ctx, command))

        try:
            done, _ = await asyncio.wait({handler_task}, timeout=self.grace_period)
            if not done:
                logger.info(
                    f"Handler still running after {self.grace_period}s, sending pending notice | "
                    f"request_id={ctx.request_id}"
                )
                await responder.ephemeral_response(self.pending_response)

            result = await handler_task
        except BaseException:
            # Shutdown cancellation or a failed pending notice: don't leave the handler orphaned
            handler_task.cancel()
            raise

        if result is None:
            logger.warning(f"Handler produced no response | request_id={ctx.request_id}")
            return

        if self.public_result:
            await responder.public_response(result)
        else:
            await responder.ephemeral_response(result)

        logger.info(
            f"Slash command completed | request_id={ctx.request_id} command={command.command} "
            f"elapsed={time.monotonic() - ctx.started_at:.3f}s"
        )


async def drain_pending(timeout: float) -> None:
    """Waits up to `timeout` seconds for in-flight orchestrations to finish."""
    if not _pending_tasks:
        return

    logger.info(f"Waiting for {len(_pending_tasks)} in-flight slash command(s)")
    _, still_running = await asyncio.wait(set(_pending_tasks), timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning(f"Cancelled {len(still_running)} unfinished slash command(s) at shutdown")
