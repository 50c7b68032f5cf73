"""Stored intervention listing and manual inserts."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from relay.core.db import get_db_session
from relay.repositories import bot_repository, intervention_repository
from relay.routers.api_models import InterventionCreateRequest, InterventionRowResponse

router = APIRouter(prefix="/api/interventions", tags=["interventions"])

_STORED_PROVIDERS = ("meeting_captions", "deepgram_streaming")


def _record_id_for(db: Session, bot_id: str | None, recall_bot_id: str | None) -> str:
    if bot_id:
        return bot_id
    if recall_bot_id:
        bot = bot_repository.get_bot_by_recall_id(db, recall_bot_id)
        if bot is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bot not found")
        return bot.id
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST, detail="botId or recallBotId is required"
    )


@router.get("", response_model=list[InterventionRowResponse])
async def list_interventions(
    db: Annotated[Session, Depends(get_db_session)],
    bot_id: Annotated[str | None, Query(alias="botId")] = None,
    recall_bot_id: Annotated[str | None, Query(alias="recallBotId")] = None,
) -> list[InterventionRowResponse]:
    record_id = _record_id_for(db, bot_id, recall_bot_id)
    rows = intervention_repository.list_interventions(db, record_id)
    return [InterventionRowResponse.model_validate(row) for row in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_intervention(
    body: InterventionCreateRequest,
    db: Annotated[Session, Depends(get_db_session)],
):
    if body.missing_fields:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Missing required fields",
                "required": ["text", "timestamp", "participant_name"],
            },
        )

    record_id = _record_id_for(db, body.bot_id, body.recall_bot_id)
    if bot_repository.get_bot_by_any_id(db, record_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bot not found")

    row = intervention_repository.create_intervention(
        db,
        bot_id=record_id,
        participant_name=body.participant_name,
        participant_id=body.participant_id or 0,
        text=body.text,
        timestamp=body.timestamp,
        is_partial=body.is_partial,
        provider=body.provider if body.provider in _STORED_PROVIDERS else "meeting_captions",
    )
    return InterventionRowResponse.model_validate(row)
