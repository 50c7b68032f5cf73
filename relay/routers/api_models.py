"""Pydantic DTOs for the HTTP API and websocket events."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

TranscriptionType = Literal["meeting_captions", "ai_transcription"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BotCreateRequest(_CamelModel):
    """Bot creation body shared by ``POST /api/bot/create`` and the ``create-bot`` event."""

    # Optional here so a missing url answers 400 rather than a validation 422
    meeting_url: str | None = Field(default=None, alias="meetingUrl")
    bot_name: str | None = Field(default=None, alias="botName", max_length=255)
    language: str | None = Field(default=None, max_length=32)
    transcription_type: str | None = Field(default=None, alias="transcriptionType")
    bot_photo: str | None = Field(default=None, alias="botPhoto")
    bot_photo_url: str | None = Field(default=None, alias="botPhotoUrl")
    template_id: str | None = Field(default=None, alias="templateId")
    connection_id: str | None = Field(default=None, alias="connectionId")


class OutputAudioRequest(BaseModel):
    b64_data: str | None = None


class TranscriptExportRequest(BaseModel):
    """Client-assembled transcript for ``POST /api/send-to-n8n``."""

    transcript_data: list[Any] | None = None
    meeting_url: str | None = None
    total_interventions: int | None = None
    timestamp: str | int | None = None


class InterventionCreateRequest(BaseModel):
    """Manual intervention row; the bot is addressed by record id or provider id."""

    bot_id: str | None = None
    recall_bot_id: str | None = None
    participant_name: str | None = None
    participant_id: int | None = None
    text: str | None = None
    timestamp: str | None = None
    is_partial: bool = False
    provider: str | None = None

    @property
    def missing_fields(self) -> list[str]:
        return [
            name
            for name in ("text", "timestamp", "participant_name")
            if not getattr(self, name)
        ]


class TemplateCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    bot_name: str = Field(min_length=1, max_length=255)
    transcription_type: TranscriptionType
    language: str = Field(min_length=1, max_length=32)
    bot_photo_url: str | None = None


class TemplateUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    bot_name: str | None = Field(default=None, min_length=1, max_length=255)
    transcription_type: TranscriptionType | None = None
    language: str | None = Field(default=None, min_length=1, max_length=32)
    bot_photo_url: str | None = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    bot_name: str
    transcription_type: str
    language: str
    bot_photo_url: str | None = None


class InterventionRowResponse(BaseModel):
    """Stored intervention as returned by ``/api/interventions``."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    bot_id: str
    participant_name: str
    participant_id: int
    text: str
    timestamp: str
    is_partial: bool
    provider: str


class BotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recall_bot_id: str
    meeting_url: str
    bot_name: str
    transcription_type: str
    language: str
    status: str
    bot_photo_url: str | None = None
    output_video_url: str | None = None
    template_id: str | None = None


# Websocket client events, framed as {"event": <name>, "data": {...}}


class CreateBotEvent(BaseModel):
    event: Literal["create-bot"]
    data: BotCreateRequest


class SubscribeBotData(_CamelModel):
    bot_id: str = Field(alias="botId", min_length=1)
    meeting_url: str | None = Field(default=None, alias="meetingUrl")


class SubscribeBotEvent(BaseModel):
    event: Literal["subscribe-bot"]
    data: SubscribeBotData


class FinalizeData(_CamelModel):
    bot_id: str = Field(alias="botId", min_length=1)


class FinalizeEvent(BaseModel):
    event: Literal["finalize"]
    data: FinalizeData


class PingEvent(BaseModel):
    event: Literal["ping"]
    data: dict[str, Any] | None = None


ClientEvent = Annotated[
    CreateBotEvent | SubscribeBotEvent | FinalizeEvent | PingEvent,
    Field(discriminator="event"),
]

CLIENT_EVENT_ADAPTER = TypeAdapter(ClientEvent)
