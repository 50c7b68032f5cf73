"""Client websocket: bot creation, subscriptions and live transcript delivery."""

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from relay.core.deps import get_ws_relay
from relay.core.logging import get_logger
from relay.core.settings import ConfigurationError
from relay.routers.api_models import (
    CLIENT_EVENT_ADAPTER,
    CreateBotEvent,
    FinalizeEvent,
    PingEvent,
    SubscribeBotEvent,
)
from relay.services.bot_provisioning import BotCreateParams
from relay.services.recall_client import RecallApiError
from relay.services.transcript_relay import TranscriptRelay

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


async def _handle_create_bot(relay: TranscriptRelay, connection_id: str, event: CreateBotEvent) -> None:
    send = relay.connections.send_to
    if not event.data.meeting_url:
        await send(connection_id, "bot-error", {"message": "Meeting URL is required", "error": None})
        return

    params = BotCreateParams(**{**event.data.model_dump(), "connection_id": connection_id})
    try:
        bot_data = await relay.provisioner.create_bot(params)
    except RecallApiError as exc:
        await send(
            connection_id,
            "bot-error",
            {"message": "Failed to create bot", "error": exc.details or str(exc)},
        )
        return
    except ConfigurationError as exc:
        await send(connection_id, "bot-error", {"message": "Failed to create bot", "error": str(exc)})
        return

    await send(
        connection_id,
        "bot-created",
        {"botId": bot_data["id"], "status": "created", "message": "Bot created successfully"},
    )


async def _handle_event(relay: TranscriptRelay, connection_id: str, raw_payload: Any) -> None:
    send = relay.connections.send_to
    try:
        event = CLIENT_EVENT_ADAPTER.validate_python(raw_payload)
    except ValidationError as exc:
        await send(
            connection_id,
            "error",
            {
                "code": "validation_error",
                "message": exc.errors()[0]["msg"] if exc.errors() else "Invalid event.",
            },
        )
        return

    if isinstance(event, CreateBotEvent):
        await _handle_create_bot(relay, connection_id, event)
    elif isinstance(event, SubscribeBotEvent):
        session = relay.router.register(
            event.data.bot_id, connection_id, meeting_url=event.data.meeting_url or ""
        )
        await send(
            connection_id,
            "bot-subscribed",
            {"botId": session.bot_id, "status": session.lifecycle_state},
        )
    elif isinstance(event, FinalizeEvent):
        relay.finalize(event.data.bot_id)
    elif isinstance(event, PingEvent):
        await send(connection_id, "pong", {})


@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket) -> None:
    relay = get_ws_relay(websocket)
    if relay is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()
    connection_id = relay.connections.add(websocket)
    await relay.connections.send_to(connection_id, "connected", {"connectionId": connection_id})

    try:
        while True:
            try:
                raw_payload = await websocket.receive_json()
            except WebSocketDisconnect as exc:
                logger.info(
                    "Websocket disconnected by client",
                    extra={
                        "component": "ws",
                        "operation": "disconnect",
                        "context_data": {
                            "connection_id": connection_id,
                            "code": getattr(exc, "code", None),
                        },
                    },
                )
                return
            except (json.JSONDecodeError, KeyError):
                sent = await relay.connections.send_to(
                    connection_id,
                    "error",
                    {"code": "invalid_payload", "message": "Expected JSON websocket message."},
                )
                if not sent:
                    return
                continue

            await _handle_event(relay, connection_id, raw_payload)
    finally:
        relay.connections.remove(connection_id)
        relay.connection_closed(connection_id)
