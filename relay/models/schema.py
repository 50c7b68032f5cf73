from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from relay.core.db import Base


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Bot(Base):
    """Meeting bot created at the provider and tracked for the life of its call."""

    __tablename__ = "bots"

    id = Column(String(36), primary_key=True, default=_new_id)
    recall_bot_id = Column(String(128), nullable=False, unique=True, index=True)
    meeting_url = Column(String(2048), nullable=False)
    bot_name = Column(String(255), nullable=False)
    transcription_type = Column(String(32), nullable=False, default="meeting_captions")
    language = Column(String(32), nullable=False, default="auto")
    bot_photo_url = Column(Text, nullable=True)

    # Lifecycle; unknown provider statuses are stored verbatim
    status = Column(String(64), nullable=False, default="created", index=True)
    socket_id = Column(String(64), nullable=True)
    output_video_url = Column(Text, nullable=True)
    template_id = Column(String(36), ForeignKey("bot_templates.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    call_started_at = Column(DateTime(timezone=True), nullable=True)
    call_ended_at = Column(DateTime(timezone=True), nullable=True)


class Intervention(Base):
    """One persisted utterance. Append-only from the relay's point of view."""

    __tablename__ = "interventions"

    id = Column(String(36), primary_key=True, default=_new_id)
    bot_id = Column(String(36), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False)
    participant_name = Column(String(255), nullable=False)
    participant_id = Column(Integer, nullable=False, default=0)
    text = Column(Text, nullable=False, default="")
    # ISO-8601 string as delivered by the provider; lexical order is time order
    timestamp = Column(String(64), nullable=False)
    is_partial = Column(Boolean, nullable=False, default=False)
    provider = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_interventions_bot_timestamp", "bot_id", "timestamp"),
        Index("idx_interventions_bot_partial", "bot_id", "is_partial"),
    )


class BotTemplate(Base):
    """Reusable bot creation defaults."""

    __tablename__ = "bot_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    bot_name = Column(String(255), nullable=False)
    transcription_type = Column(String(32), nullable=False)
    language = Column(String(32), nullable=False)
    bot_photo_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
