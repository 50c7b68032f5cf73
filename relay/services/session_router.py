"""Bot session map and delivery of bot events to client connections."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from threading import Lock
from typing import Any, Protocol

from relay.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionRegistry(Protocol):
    """Live client connections the router can deliver to."""

    def is_live(self, connection_id: str) -> bool: ...

    def live_connection_ids(self) -> list[str]: ...

    async def send_to(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool: ...

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> int: ...


@dataclass
class BotSession:
    """Routing state for one provider bot.

    ``connection_id`` is a weak reference: the connection may be gone.
    """

    bot_id: str
    connection_id: str
    meeting_url: str = ""
    lifecycle_state: str = "created"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class BotSessionStore:
    """In-memory session map keyed by provider bot id.

    Owned by whoever builds the relay and passed to the components that need
    it; at most one session exists per bot id.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, BotSession] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def put(self, session: BotSession) -> BotSession:
        with self._lock:
            self._sessions[session.bot_id] = session
        return session

    def get(self, bot_id: str) -> BotSession | None:
        with self._lock:
            session = self._sessions.get(bot_id)
            return replace(session) if session is not None else None

    def set_lifecycle_state(self, bot_id: str, state: str) -> str | None:
        """Store a new lifecycle state and return the previous one (``None`` when unknown)."""

        with self._lock:
            session = self._sessions.get(bot_id)
            if session is None:
                return None
            previous = session.lifecycle_state
            session.lifecycle_state = state
            session.updated_at = datetime.now(UTC)
            return previous

    def remove(self, bot_id: str) -> BotSession | None:
        with self._lock:
            return self._sessions.pop(bot_id, None)

    def remove_where(self, predicate) -> list[BotSession]:
        with self._lock:
            doomed = [s for s in self._sessions.values() if predicate(s)]
            for session in doomed:
                self._sessions.pop(session.bot_id, None)
            return doomed

    def all(self) -> list[BotSession]:
        with self._lock:
            return [replace(s) for s in self._sessions.values()]

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


class DeliveryOutcome(str, Enum):
    DIRECT = "direct"
    BROADCAST = "broadcast"
    DROPPED = "dropped"


@dataclass(frozen=True)
class CleanupReport:
    initial_sessions: int
    remaining_sessions: int
    removed_bot_ids: list[str]

    @property
    def removed_sessions(self) -> int:
        return len(self.removed_bot_ids)


async def deliver_on_routing_miss(
    connections: ConnectionRegistry,
    event_name: str,
    payload: dict[str, Any],
    *,
    broadcast_enabled: bool,
) -> DeliveryOutcome:
    """Policy for events whose owning connection is unknown or gone.

    Broadcasting favours visibility over isolation: every connected client
    sees the event. That is fine for a single-operator tool and leaks across
    tenants otherwise; ``broadcast_enabled=False`` drops instead.
    """

    if not broadcast_enabled:
        return DeliveryOutcome.DROPPED
    await connections.broadcast(event_name, payload)
    return DeliveryOutcome.BROADCAST


class SessionRouter:
    """Maps bot ids to owning connections and delivers events to them."""

    def __init__(
        self,
        store: BotSessionStore,
        connections: ConnectionRegistry,
        *,
        broadcast_on_miss: bool = True,
    ) -> None:
        self.store = store
        self.connections = connections
        self._broadcast_on_miss = broadcast_on_miss

    def register(
        self,
        bot_id: str,
        connection_id: str,
        *,
        meeting_url: str = "",
        lifecycle_state: str | None = None,
    ) -> BotSession:
        """Assign a bot to a connection, replacing any earlier owner."""

        existing = self.store.get(bot_id)
        session = BotSession(
            bot_id=bot_id,
            connection_id=connection_id,
            meeting_url=meeting_url or (existing.meeting_url if existing else ""),
            lifecycle_state=lifecycle_state
            or (existing.lifecycle_state if existing else "created"),
            created_at=existing.created_at if existing else datetime.now(UTC),
        )
        self.store.put(session)
        logger.info(
            "Bot session registered",
            extra={
                "component": "session_router",
                "operation": "register",
                "item_id": bot_id,
                "context_data": {
                    "connection_id": connection_id,
                    "reassigned_from": existing.connection_id if existing else None,
                },
            },
        )
        return session

    def resolve(self, bot_id: str) -> str | None:
        session = self.store.get(bot_id)
        return session.connection_id if session is not None else None

    async def deliver(self, bot_id: str, event_name: str, payload: dict[str, Any]) -> DeliveryOutcome:
        """Send to the owning connection, falling back to the routing-miss policy."""

        connection_id = self.resolve(bot_id)
        if connection_id is not None and self.connections.is_live(connection_id):
            if await self.connections.send_to(connection_id, event_name, payload):
                return DeliveryOutcome.DIRECT

        outcome = await deliver_on_routing_miss(
            self.connections,
            event_name,
            payload,
            broadcast_enabled=self._broadcast_on_miss,
        )
        logger.info(
            "Routing miss for bot event",
            extra={
                "component": "session_router",
                "operation": "deliver",
                "item_id": bot_id,
                "context_data": {
                    "event": event_name,
                    "has_session": connection_id is not None,
                    "connection_id": connection_id,
                    "outcome": outcome.value,
                },
            },
        )
        return outcome

    def unregister_connection(self, connection_id: str) -> list[str]:
        """Remove every session owned by ``connection_id``; returns their bot ids."""

        removed = self.store.remove_where(lambda s: s.connection_id == connection_id)
        bot_ids = [s.bot_id for s in removed]
        if bot_ids:
            logger.info(
                "Cleaned up bot sessions for closed connection",
                extra={
                    "component": "session_router",
                    "operation": "unregister_connection",
                    "context_data": {"connection_id": connection_id, "bot_ids": bot_ids},
                },
            )
        return bot_ids

    def cleanup_orphaned(self) -> CleanupReport:
        """Remove sessions whose connection is not currently live."""

        live = set(self.connections.live_connection_ids())
        initial = len(self.store)
        removed = self.store.remove_where(lambda s: s.connection_id not in live)
        report = CleanupReport(
            initial_sessions=initial,
            remaining_sessions=len(self.store),
            removed_bot_ids=[s.bot_id for s in removed],
        )
        logger.info(
            "Orphaned session cleanup completed",
            extra={
                "component": "session_router",
                "operation": "cleanup",
                "context_data": {
                    "initial_sessions": report.initial_sessions,
                    "remaining_sessions": report.remaining_sessions,
                    "removed_bot_ids": report.removed_bot_ids,
                },
            },
        )
        return report
