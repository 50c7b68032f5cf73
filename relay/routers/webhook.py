"""Provider webhook receiving transcript and bot status events."""

import json

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from relay.core.deps import RelayDep
from relay.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhook"])


@router.post(
    "/webhook/transcription",
    summary="Provider realtime webhook",
    responses={
        200: {"description": "Event accepted (including ignored or malformed events)"},
        500: {"description": "Handler crashed"},
    },
)
async def receive_webhook(request: Request, relay: RelayDep):
    """Feed one ``{event, data}`` envelope into the relay."""
    try:
        envelope = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning(
            "Webhook body is not JSON",
            extra={"component": "webhook", "operation": "receive"},
        )
        envelope = {}

    if not isinstance(envelope, dict):
        envelope = {}

    try:
        outcome = await relay.handle_webhook(envelope)
    except Exception:
        logger.exception(
            "Webhook handler failed",
            extra={
                "component": "webhook",
                "operation": "receive",
                "context_data": {"event": envelope.get("event")},
            },
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    logger.debug(
        "Webhook processed",
        extra={
            "component": "webhook",
            "operation": "receive",
            "item_id": outcome.bot_id,
            "context_data": {
                "event": outcome.event,
                "handled": outcome.handled,
                "fragments": outcome.fragments,
            },
        },
    )
    return {"status": "success"}
