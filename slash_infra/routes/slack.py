from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from slash_infra.models.slack import RESPONSE_EPHEMERAL, Response, SlashCommandRequest
from slash_infra.services.delayed_response import DelayedSlashResponse, HandlerContext
from slash_infra.services.ec2_resolver import EC2_INSTANCE_KIND, Resolver
from slash_infra.services.slack_formatter import format_ec2_instance_as_attachment
from slash_infra.utils.logger import logger

router = APIRouter(prefix="/slack", tags=["Slack"])

USAGE_TEXT = (
    "Look up infrastructure by id:\n"
    "• `/infra i-0123456789abcdef0` — find an EC2 instance in any configured account"
)


# ---------------------------------------------------------------------------
# POST /slack/infra-search
# ---------------------------------------------------------------------------

@router.post("/infra-search")
async def infra_search(request: Request):
    """
    Entry point for the infrastructure search slash command.

    The signature has already been checked by VerifySlackSignatureMiddleware
    by the time we get here.

    Flow:
        1. Parse the URL-encoded body.
        2. Immediately reply so the command stays visible in the channel.
        3. Search every configured resolver in a background task.
        4. POST the result back to Slack via response_url, with a
           "one second" notice in between if the search is slow.
    """
    raw_body = await request.body()
    try:
        command = SlashCommandRequest.from_form_body(raw_body)
    except ValueError as exc:
        logger.warning(f"Could not parse slash command payload | error={exc}")
        return PlainTextResponse("could not parse payload", status_code=400)

    query = command.text.strip()
    logger.info(
        f"Slack command received | command={command.command} "
        f"user_id={command.user_id} channel_id={command.channel_id} text='{query}'"
    )

    if not query:
        return JSONResponse({"response_type": RESPONSE_EPHEMERAL, "text": USAGE_TEXT})

    resolver: Resolver = request.app.state.resolver

    async def find_resources(ctx: HandlerContext, cmd: SlashCommandRequest) -> Response:
        result_sets = await resolver.search(ctx, cmd.text)

        response = Response()
        for result_set in result_sets:
            # Only unambiguous matches are worth a full attachment
            if result_set.kind == EC2_INSTANCE_KIND and len(result_set.results) == 1:
                response.attachments.append(format_ec2_instance_as_attachment(result_set.results[0]))

        if not response.attachments:
            response.text = f"I couldn't find anything matching `{cmd.text.strip()}`"

        logger.info(
            f"Infra search finished | request_id={ctx.request_id} "
            f"result_sets={len(result_sets)} attachments={len(response.attachments)}"
        )
        return response

    find_resources_reply = DelayedSlashResponse(
        pending_response=Response(text="One second while we look that up..."),
        handler=find_resources,
        show_slash_command_in_channel=True,
        public_result=True,
        grace_period=request.app.state.grace_period,
    )
    return find_resources_reply.run(command, request.app.state.http_client)
