"""Repository helpers for persisted bots."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from relay.models.schema import Bot


def create_bot(
    db: Session,
    *,
    recall_bot_id: str,
    meeting_url: str,
    bot_name: str,
    transcription_type: str,
    language: str,
    bot_photo_url: str | None = None,
    socket_id: str | None = None,
    template_id: str | None = None,
    status: str = "created",
) -> Bot:
    bot = Bot(
        recall_bot_id=recall_bot_id,
        meeting_url=meeting_url,
        bot_name=bot_name,
        transcription_type=transcription_type,
        language=language,
        bot_photo_url=bot_photo_url,
        socket_id=socket_id,
        template_id=template_id,
        status=status,
    )
    db.add(bot)
    db.commit()
    db.refresh(bot)
    return bot


def get_bot_by_recall_id(db: Session, recall_bot_id: str) -> Bot | None:
    return db.execute(select(Bot).where(Bot.recall_bot_id == recall_bot_id)).scalar_one_or_none()


def get_bot_by_any_id(db: Session, bot_id: str) -> Bot | None:
    """Look a bot up by record id first, then by provider bot id."""
    bot = db.get(Bot, bot_id)
    if bot is not None:
        return bot
    return get_bot_by_recall_id(db, bot_id)


def list_bots(db: Session) -> list[Bot]:
    return list(db.execute(select(Bot).order_by(Bot.created_at.desc())).scalars())


def update_bot_status(db: Session, recall_bot_id: str, status: str) -> Bot | None:
    """Set the lifecycle status, stamping call start and end times.

    Returns ``None`` when no bot with that provider id is stored.
    """
    bot = get_bot_by_recall_id(db, recall_bot_id)
    if bot is None:
        return None

    now = datetime.now(UTC)
    bot.status = status
    if status == "in_call":
        bot.call_started_at = now
    elif status == "call_ended":
        bot.call_ended_at = now
    db.commit()
    db.refresh(bot)
    return bot


def update_output_video_url(db: Session, recall_bot_id: str, url: str) -> None:
    bot = get_bot_by_recall_id(db, recall_bot_id)
    if bot is None or bot.output_video_url == url:
        return
    bot.output_video_url = url
    db.commit()
