"""Best-effort persistence of interventions and bot lifecycle changes.

Every method runs its ORM work in a worker thread and never raises: a slow
or failing database must not stall live transcript delivery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from relay.core.logging import get_logger
from relay.domain.transcript import Intervention
from relay.repositories import bot_repository, intervention_repository

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class BotRecord:
    id: str
    recall_bot_id: str
    status: str


class PersistenceSink:
    """Writes assembler output and lifecycle changes to the relational store."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        # Writes run one at a time, in the order they were scheduled
        self._write_lock = asyncio.Lock()

    def _find_bot(self, db: Session, external_id: str) -> BotRecord | None:
        bot = bot_repository.get_bot_by_recall_id(db, external_id)
        if bot is None:
            return None
        return BotRecord(id=bot.id, recall_bot_id=bot.recall_bot_id, status=bot.status)

    def _save_sync(self, external_bot_id: str, intervention: Intervention) -> bool:
        db = self._session_factory()
        try:
            bot = self._find_bot(db, external_bot_id)
            if bot is None:
                logger.warning(
                    "No stored bot for intervention, skipping persistence",
                    extra={
                        "component": "persistence",
                        "operation": "save_intervention",
                        "item_id": external_bot_id,
                        "context_data": {"intervention_id": intervention.id},
                    },
                )
                return False
            intervention_repository.create_intervention(
                db,
                bot_id=bot.id,
                participant_name=intervention.speaker.display_name,
                participant_id=intervention.speaker.id,
                text=intervention.accumulated_text,
                timestamp=intervention.started_at,
                is_partial=intervention.is_partial,
                provider=intervention.provider.storage_name,
            )
            return True
        finally:
            db.close()

    def _update_lifecycle_sync(self, external_bot_id: str, state: str) -> bool:
        db = self._session_factory()
        try:
            return bot_repository.update_bot_status(db, external_bot_id, state) is not None
        finally:
            db.close()

    def _find_bot_sync(self, external_id: str) -> BotRecord | None:
        db = self._session_factory()
        try:
            return self._find_bot(db, external_id)
        finally:
            db.close()

    async def save(self, external_bot_id: str, intervention: Intervention) -> bool:
        try:
            async with self._write_lock:
                return await asyncio.to_thread(self._save_sync, external_bot_id, intervention)
        except Exception:
            logger.exception(
                "Failed to persist intervention",
                extra={
                    "component": "persistence",
                    "operation": "save_intervention",
                    "item_id": external_bot_id,
                    "context_data": {
                        "intervention_id": intervention.id,
                        "is_partial": intervention.is_partial,
                    },
                },
            )
            return False

    async def find_bot_by_external_id(self, external_id: str) -> BotRecord | None:
        try:
            return await asyncio.to_thread(self._find_bot_sync, external_id)
        except Exception:
            logger.exception(
                "Failed to look up bot",
                extra={
                    "component": "persistence",
                    "operation": "find_bot",
                    "item_id": external_id,
                },
            )
            return None

    async def update_lifecycle(self, external_bot_id: str, state: str) -> bool:
        try:
            async with self._write_lock:
                updated = await asyncio.to_thread(
                    self._update_lifecycle_sync, external_bot_id, state
                )
        except Exception:
            logger.exception(
                "Failed to persist bot status",
                extra={
                    "component": "persistence",
                    "operation": "update_lifecycle",
                    "item_id": external_bot_id,
                    "context_data": {"status": state},
                },
            )
            return False
        if not updated:
            logger.warning(
                "Status change for unknown bot",
                extra={
                    "component": "persistence",
                    "operation": "update_lifecycle",
                    "item_id": external_bot_id,
                    "context_data": {"status": state},
                },
            )
        return updated
