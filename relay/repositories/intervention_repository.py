"""Repository helpers for persisted interventions."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from relay.models.schema import Intervention


def create_intervention(
    db: Session,
    *,
    bot_id: str,
    participant_name: str,
    participant_id: int,
    text: str,
    timestamp: str,
    is_partial: bool,
    provider: str,
) -> Intervention:
    row = Intervention(
        bot_id=bot_id,
        participant_name=participant_name,
        participant_id=participant_id,
        text=text,
        timestamp=timestamp,
        is_partial=is_partial,
        provider=provider,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_interventions(
    db: Session,
    bot_id: str,
    *,
    after: str | None = None,
    finalized_only: bool = False,
) -> list[Intervention]:
    """Interventions for a bot record ordered by timestamp.

    Args:
        db: Database session
        bot_id: Bot record id (not the provider id)
        after: Only rows with a timestamp strictly greater than this ISO string
        finalized_only: Skip partial rows
    """
    query = select(Intervention).where(Intervention.bot_id == bot_id)
    if after:
        query = query.where(Intervention.timestamp > after)
    if finalized_only:
        query = query.where(Intervention.is_partial.is_(False))
    query = query.order_by(Intervention.timestamp.asc(), Intervention.created_at.asc())
    return list(db.execute(query).scalars())
