"""Bot lifecycle endpoints: creation, provider status, transcripts and exports."""

import base64
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from relay.core.db import get_db_session
from relay.core.deps import RelayDep
from relay.core.logging import get_logger
from relay.domain.transcript import utc_iso
from relay.models.schema import Bot
from relay.repositories import bot_repository, intervention_repository
from relay.routers.api_models import (
    BotCreateRequest,
    BotResponse,
    OutputAudioRequest,
    TranscriptExportRequest,
)
from relay.services.bot_provisioning import BotCreateParams
from relay.services.recall_client import JPEG_DATA_URL_PREFIX

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["bots"])

JPEG_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg"})


def _require_bot(db: Session, bot_id: str) -> Bot:
    bot = bot_repository.get_bot_by_any_id(db, bot_id)
    if bot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bot not found")
    return bot


def _provider_status(bot_data: dict[str, Any]) -> str | None:
    if bot_data.get("status"):
        return bot_data["status"]
    changes = bot_data.get("status_changes") or []
    if changes and isinstance(changes[-1], dict):
        return changes[-1].get("code")
    return None


@router.post(
    "/bot/create",
    summary="Create a meeting bot",
    responses={
        400: {"description": "meetingUrl missing"},
        502: {"description": "Provider rejected or failed the request"},
        503: {"description": "Provider credentials not configured"},
    },
)
async def create_bot(body: BotCreateRequest, relay: RelayDep) -> dict:
    if not body.meeting_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Meeting URL is required")

    bot_data = await relay.provisioner.create_bot(BotCreateParams(**body.model_dump()))
    return {
        "botId": bot_data["id"],
        "status": "created",
        "message": "Bot created successfully",
        "botData": bot_data,
    }


@router.post(
    "/bot/create-with-image",
    summary="Create a meeting bot with an uploaded jpeg avatar",
    responses={
        400: {"description": "meetingUrl missing or photo is not a jpeg"},
        413: {"description": "Photo larger than the configured limit"},
        502: {"description": "Provider rejected or failed the request"},
    },
)
async def create_bot_with_image(
    relay: RelayDep,
    meeting_url: Annotated[str | None, Form(alias="meetingUrl")] = None,
    language: Annotated[str | None, Form()] = None,
    bot_name: Annotated[str | None, Form(alias="botName")] = None,
    transcription_type: Annotated[str | None, Form(alias="transcriptionType")] = None,
    socket_id: Annotated[str | None, Form(alias="socketId")] = None,
    template_id: Annotated[str | None, Form(alias="templateId")] = None,
    bot_photo: Annotated[UploadFile | None, File(alias="botPhoto")] = None,
) -> dict:
    """Multipart variant of bot creation; the photo is kept as a jpeg data URL."""
    if not meeting_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Meeting URL is required")

    photo_data_url = None
    if bot_photo is not None:
        if bot_photo.content_type not in JPEG_CONTENT_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Only JPEG images are allowed"
            )
        image = await bot_photo.read()
        if len(image) > relay.settings.max_bot_photo_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image file is too large"
            )
        photo_data_url = JPEG_DATA_URL_PREFIX + base64.b64encode(image).decode("ascii")
        logger.info(
            "Bot photo received",
            extra={
                "component": "bots_api",
                "operation": "create_with_image",
                "context_data": {"filename": bot_photo.filename, "bytes": len(image)},
            },
        )

    bot_data = await relay.provisioner.create_bot(
        BotCreateParams(
            meeting_url=meeting_url,
            bot_name=bot_name,
            language=language,
            transcription_type=transcription_type,
            bot_photo=photo_data_url,
            bot_photo_url=photo_data_url,
            template_id=template_id,
            connection_id=socket_id,
        )
    )
    return {
        "botId": bot_data["id"],
        "status": "created",
        "message": "Bot created successfully",
    }


@router.get("/bots", response_model=list[BotResponse])
async def list_bots(db: Annotated[Session, Depends(get_db_session)]) -> list[BotResponse]:
    """All stored bots, newest first."""
    return [BotResponse.model_validate(bot) for bot in bot_repository.list_bots(db)]


@router.get("/bot/{bot_id}/status")
async def get_bot_status(
    bot_id: str,
    relay: RelayDep,
    db: Annotated[Session, Depends(get_db_session)],
) -> dict:
    """Provider status passthrough; remembers the output video url when present."""
    bot_data = await relay.recall.get_bot(bot_id)
    output_video = bot_data.get("output_video")
    if output_video:
        try:
            bot_repository.update_output_video_url(db, bot_id, str(output_video))
        except Exception:
            logger.exception(
                "Failed to store output video url",
                extra={"component": "bots_api", "operation": "status", "item_id": bot_id},
            )
            db.rollback()

    return {
        "botId": bot_id,
        "status": _provider_status(bot_data),
        "outputVideo": output_video,
        "hasOutputVideo": bool(output_video),
        "botData": bot_data,
    }


@router.get(
    "/bot/{bot_id}/transcript",
    responses={404: {"description": "No recording or transcript not ready"}},
)
async def get_bot_transcript(bot_id: str, relay: RelayDep) -> dict:
    recording, transcript = await relay.recall.fetch_transcript(bot_id)
    return {
        "botId": bot_id,
        "transcript": transcript,
        "recordingId": recording.get("id"),
        "status": "success",
    }


@router.get("/bot/{bot_id}/poll")
async def poll_bot(
    bot_id: str,
    db: Annotated[Session, Depends(get_db_session)],
    last_timestamp: Annotated[str | None, Query(alias="lastTimestamp")] = None,
) -> dict:
    """Stored interventions newer than ``lastTimestamp``."""
    bot = _require_bot(db, bot_id)
    rows = intervention_repository.list_interventions(db, bot.id, after=last_timestamp)

    if rows:
        newest = rows[-1].timestamp
    else:
        newest = last_timestamp or utc_iso(bot.created_at)

    return {
        "bot": {
            "id": bot.id,
            "recall_bot_id": bot.recall_bot_id,
            "status": bot.status,
            "meeting_url": bot.meeting_url,
            "bot_name": bot.bot_name,
        },
        "interventions": [
            {
                "id": row.id,
                "participant": {"name": row.participant_name, "id": row.participant_id},
                "text": row.text,
                "timestamp": row.timestamp,
                "isPartial": row.is_partial,
            }
            for row in rows
        ],
        "lastTimestamp": newest,
    }


def _audio_sent(bot_id: str, result: Any) -> dict:
    return {
        "botId": bot_id,
        "status": "success",
        "message": "Audio sent to bot successfully",
        "result": result,
    }


@router.post("/bot/{bot_id}/output-audio")
async def send_output_audio_file(
    bot_id: str,
    relay: RelayDep,
    audio_file: Annotated[UploadFile | None, File(alias="audioFile")] = None,
) -> dict:
    """Play an uploaded mp3 through the bot."""
    if audio_file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Audio file is required")

    audio = await audio_file.read()
    if len(audio) > relay.settings.max_output_audio_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Audio file is too large"
        )
    result = await relay.recall.send_output_audio(bot_id, base64.b64encode(audio).decode("ascii"))
    return _audio_sent(bot_id, result)


@router.post("/bot/{bot_id}/output-audio-base64")
async def send_output_audio(bot_id: str, body: OutputAudioRequest, relay: RelayDep) -> dict:
    """Play base64 mp3 audio through the bot."""
    if not body.b64_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="b64_data is required")

    result = await relay.recall.send_output_audio(bot_id, body.b64_data)
    return _audio_sent(bot_id, result)


@router.post("/bot/{bot_id}/finalize")
async def finalize_intervention(bot_id: str, relay: RelayDep) -> dict:
    """Close the bot's open intervention now instead of waiting for the idle timeout."""
    intervention = relay.finalize(bot_id)
    return {
        "botId": bot_id,
        "intervention": intervention.to_payload() if intervention is not None else None,
    }


@router.post(
    "/bot/{bot_id}/send-to-n8n",
    responses={
        400: {"description": "No finalized interventions"},
        404: {"description": "Bot not found"},
        500: {"description": "N8N_WEBHOOK_URL not configured"},
        502: {"description": "n8n rejected the transcript"},
    },
)
async def send_to_n8n(
    bot_id: str,
    relay: RelayDep,
    db: Annotated[Session, Depends(get_db_session)],
) -> dict:
    bot = _require_bot(db, bot_id)
    rows = intervention_repository.list_interventions(db, bot.id, finalized_only=True)
    result = await relay.n8n.send_finalized_transcript(bot, rows, requested_bot_id=bot_id)
    return {
        "success": True,
        "message": "Transcript sent to n8n successfully",
        "n8n_response_status": result.response_status,
        "total_interventions": result.total_interventions,
        "bot_id": bot_id,
    }


@router.post(
    "/send-to-n8n",
    responses={
        400: {"description": "Empty transcript"},
        500: {"description": "N8N_WEBHOOK_URL not configured"},
        502: {"description": "n8n rejected the transcript"},
    },
)
async def send_transcript_to_n8n(body: TranscriptExportRequest, relay: RelayDep) -> dict:
    """Forward a transcript the client assembled itself, without a stored bot."""
    result = await relay.n8n.send_transcript_data(
        body.transcript_data or [],
        meeting_url=body.meeting_url,
        total_interventions=body.total_interventions,
        timestamp=str(body.timestamp) if body.timestamp is not None else None,
    )
    return {
        "success": True,
        "message": "Transcript sent to n8n successfully",
        "n8n_response_status": result.response_status,
        "total_interventions": result.total_interventions,
    }
