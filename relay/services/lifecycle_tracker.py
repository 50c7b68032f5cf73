"""Coarse bot lifecycle (created -> in_call -> call_ended) and its side effects."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from relay.core.logging import get_logger
from relay.services.intervention_assembler import InterventionAssembler
from relay.services.session_router import SessionRouter

logger = get_logger(__name__)


class BotLifecycleState(str, Enum):
    CREATED = "created"
    IN_CALL = "in_call"
    CALL_ENDED = "call_ended"


KNOWN_STATES = frozenset(state.value for state in BotLifecycleState)

# (bot_id, state) -> None; must not block, persistence is scheduled elsewhere
LifecyclePersister = Callable[[str, str], None]
EventDeliverer = Callable[[str, str, dict[str, Any]], Awaitable[Any]]


def bot_status_payload(bot_id: str, status: str, previous: str | None) -> dict[str, Any]:
    return {"botId": bot_id, "status": status, "previousStatus": previous}


class LifecycleTracker:
    """Applies provider status changes to the session map and the assembler."""

    def __init__(
        self,
        router: SessionRouter,
        assembler: InterventionAssembler,
        persist: LifecyclePersister | None = None,
        deliver: EventDeliverer | None = None,
    ) -> None:
        self._router = router
        self._assembler = assembler
        self._persist = persist
        self._deliver = deliver or router.deliver

    def state_of(self, bot_id: str) -> str | None:
        session = self._router.store.get(bot_id)
        return session.lifecycle_state if session is not None else None

    async def apply_status(self, bot_id: str, new_state: str) -> str | None:
        """Record ``new_state`` for ``bot_id`` and return the state it replaced.

        Unknown states are stored as-is. The ``bot-status`` event is always
        delivered, whether or not the state is one we act on.
        """

        previous = self._router.store.set_lifecycle_state(bot_id, new_state)

        logger.info(
            "Bot status changed",
            extra={
                "component": "lifecycle_tracker",
                "operation": "apply_status",
                "item_id": bot_id,
                "context_data": {
                    "status": new_state,
                    "previous_status": previous,
                    "known": new_state in KNOWN_STATES,
                },
            },
        )

        if self._persist is not None:
            self._persist(bot_id, new_state)

        if new_state == BotLifecycleState.CALL_ENDED.value:
            self._assembler.discard(bot_id, reason="call_ended")

        await self._deliver(bot_id, "bot-status", bot_status_payload(bot_id, new_state, previous))
        return previous
