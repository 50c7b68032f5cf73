"""Wires the normalizer, assembler, router and lifecycle tracker together.

One ``TranscriptRelay`` is built per process and attached to ``app.state``.
Assembler events are delivered to clients in emission order per bot and
persisted in the background; neither path blocks webhook ingestion.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

import httpx

from relay.core.logging import get_logger
from relay.core.settings import Settings
from relay.domain.transcript import AssemblerEvent, AssemblerEventType, Intervention
from relay.services.bot_provisioning import BotProvisioner
from relay.services.connection_manager import ConnectionManager
from relay.services.intervention_assembler import InterventionAssembler
from relay.services.lifecycle_tracker import LifecycleTracker
from relay.services.n8n_export import N8nExporter
from relay.services.persistence import PersistenceSink, SessionFactory
from relay.services.recall_client import RecallClient
from relay.services.session_router import (
    BotSessionStore,
    CleanupReport,
    ConnectionRegistry,
    DeliveryOutcome,
    SessionRouter,
)
from relay.services.transcript_normalizer import fragment_kind_for_event, normalize

logger = get_logger(__name__)

STATUS_CHANGE_EVENT = "bot.status_change"
TRANSCRIPTION_EVENT = "transcription"


@dataclass(frozen=True)
class WebhookOutcome:
    event: str | None
    bot_id: str | None
    handled: bool
    fragments: int = 0


def _status_from(data: dict[str, Any]) -> str | None:
    status = data.get("status")
    if isinstance(status, dict):
        status = status.get("code")
    return status if isinstance(status, str) and status else None


def transcription_payload(event: AssemblerEvent) -> dict[str, Any]:
    return {
        "type": event.type.value,
        "botId": event.bot_id,
        "intervention": event.intervention.to_payload(),
    }


class TranscriptRelay:
    def __init__(
        self,
        *,
        settings: Settings,
        connections: ConnectionRegistry,
        store: BotSessionStore,
        router: SessionRouter,
        assembler: InterventionAssembler,
        sink: PersistenceSink,
        recall: RecallClient,
        n8n: N8nExporter,
        session_factory: SessionFactory,
    ) -> None:
        self.settings = settings
        self.connections = connections
        self.store = store
        self.router = router
        self.assembler = assembler
        self.sink = sink
        self.recall = recall
        self.n8n = n8n
        self.session_factory = session_factory
        self.provisioner = BotProvisioner(settings, recall, router, session_factory)
        self.lifecycle = LifecycleTracker(
            router,
            assembler,
            persist=self._persist_lifecycle,
            deliver=self.schedule_delivery,
        )
        self._tasks: set[asyncio.Task[Any]] = set()
        self._delivery_tails: dict[str, asyncio.Task[DeliveryOutcome]] = {}
        assembler.subscribe(self._on_assembler_event)

    # Background work

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver_after(
        self,
        previous: asyncio.Task[DeliveryOutcome] | None,
        bot_id: str,
        event_name: str,
        payload: dict[str, Any],
    ) -> DeliveryOutcome:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            return await self.router.deliver(bot_id, event_name, payload)
        except Exception:
            logger.exception(
                "Event delivery failed",
                extra={
                    "component": "transcript_relay",
                    "operation": "deliver",
                    "item_id": bot_id,
                    "context_data": {"event": event_name},
                },
            )
            return DeliveryOutcome.DROPPED

    def _enqueue_delivery(
        self, bot_id: str, event_name: str, payload: dict[str, Any]
    ) -> asyncio.Task[DeliveryOutcome]:
        previous = self._delivery_tails.get(bot_id)
        task = self._spawn(
            self._deliver_after(previous, bot_id, event_name, payload),
            name=f"deliver-{event_name}-{bot_id}",
        )
        self._delivery_tails[bot_id] = task

        def _release(done: asyncio.Task[DeliveryOutcome]) -> None:
            if self._delivery_tails.get(bot_id) is done:
                del self._delivery_tails[bot_id]

        task.add_done_callback(_release)
        return task

    async def schedule_delivery(self, bot_id: str, event_name: str, payload: dict[str, Any]) -> None:
        """Queue an event behind earlier ones for ``bot_id`` without waiting for the send."""
        self._enqueue_delivery(bot_id, event_name, payload)

    def _on_assembler_event(self, event: AssemblerEvent) -> None:
        self._enqueue_delivery(event.bot_id, TRANSCRIPTION_EVENT, transcription_payload(event))

        if event.type is AssemblerEventType.FINALIZED or self.settings.persist_partial_interventions:
            self._spawn(
                self.sink.save(event.bot_id, event.intervention),
                name=f"persist-intervention-{event.bot_id}",
            )

    def _persist_lifecycle(self, bot_id: str, state: str) -> None:
        self._spawn(self.sink.update_lifecycle(bot_id, state), name=f"persist-status-{bot_id}")

    async def drain(self) -> None:
        """Wait for all background deliveries and writes, including ones they start."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Inbound events

    async def handle_webhook(self, envelope: dict[str, Any]) -> WebhookOutcome:
        """Process one provider webhook envelope ``{event, data}``.

        Never raises for malformed input; unknown events are logged and ignored.
        """
        event_name = envelope.get("event") if isinstance(envelope, dict) else None
        data = envelope.get("data") if isinstance(envelope, dict) else None
        if not isinstance(data, dict):
            data = {}
        bot = data.get("bot")
        bot_id = bot.get("id") if isinstance(bot, dict) else None
        if not isinstance(bot_id, str):
            bot_id = None

        if event_name == STATUS_CHANGE_EVENT:
            status = _status_from(data)
            if not bot_id or not status:
                logger.warning(
                    "Status change without bot id or status",
                    extra={
                        "component": "transcript_relay",
                        "operation": "handle_webhook",
                        "item_id": bot_id,
                        "context_data": {"event": event_name},
                    },
                )
                return WebhookOutcome(event_name, bot_id, handled=False)
            await self.lifecycle.apply_status(bot_id, status)
            return WebhookOutcome(event_name, bot_id, handled=True)

        kind = fragment_kind_for_event(event_name) if isinstance(event_name, str) else None
        if kind is not None:
            raw_payload = data.get("data")
            if not bot_id or not raw_payload:
                logger.warning(
                    "Transcript event without bot id or data",
                    extra={
                        "component": "transcript_relay",
                        "operation": "handle_webhook",
                        "item_id": bot_id,
                        "context_data": {"event": event_name},
                    },
                )
                return WebhookOutcome(event_name, bot_id, handled=False)

            fragments = normalize(kind, raw_payload)
            for fragment in fragments:
                self.assembler.ingest(bot_id, fragment)
            return WebhookOutcome(event_name, bot_id, handled=True, fragments=len(fragments))

        logger.info(
            "Ignoring webhook event",
            extra={
                "component": "transcript_relay",
                "operation": "handle_webhook",
                "item_id": bot_id,
                "context_data": {"event": event_name},
            },
        )
        return WebhookOutcome(event_name, bot_id, handled=False)

    def finalize(self, bot_id: str) -> Intervention | None:
        return self.assembler.finalize(bot_id, reason="manual")

    def connection_closed(self, connection_id: str) -> list[str]:
        removed = self.router.unregister_connection(connection_id)
        for bot_id in removed:
            self.assembler.discard(bot_id, reason="connection_closed")
        return removed

    def cleanup_orphaned(self) -> CleanupReport:
        """Drop sessions without a live connection, plus idle assembler state nobody routes to."""

        report = self.router.cleanup_orphaned()
        for bot_id in report.removed_bot_ids:
            self.assembler.discard(bot_id, reason="cleanup")
        for bot_id in self.assembler.bot_ids():
            if self.store.get(bot_id) is None and self.assembler.open_intervention(bot_id) is None:
                self.assembler.discard(bot_id, reason="cleanup")
        return report

    async def shutdown(self) -> None:
        """Flush open interventions, wait for pending writes and close clients."""
        flushed = self.assembler.flush_all("shutdown")
        await self.drain()
        await self.recall.aclose()
        await self.n8n.aclose()
        logger.info(
            "Transcript relay stopped",
            extra={
                "component": "transcript_relay",
                "operation": "shutdown",
                "context_data": {"flushed_interventions": len(flushed)},
            },
        )


def build_relay(
    settings: Settings,
    session_factory: SessionFactory,
    *,
    connections: ConnectionRegistry | None = None,
    http_client: httpx.AsyncClient | None = None,
    recall: RecallClient | None = None,
) -> TranscriptRelay:
    """Build a relay with its own session store, assembler and clients."""
    connections = connections if connections is not None else ConnectionManager()
    store = BotSessionStore()
    return TranscriptRelay(
        settings=settings,
        connections=connections,
        store=store,
        router=SessionRouter(
            store, connections, broadcast_on_miss=settings.broadcast_on_routing_miss
        ),
        assembler=InterventionAssembler(
            idle_timeout=settings.intervention_idle_timeout_seconds,
            duplicate_window=settings.duplicate_window_seconds,
        ),
        sink=PersistenceSink(session_factory),
        recall=recall or RecallClient(settings, http_client),
        n8n=N8nExporter(settings, http_client),
        session_factory=session_factory,
    )
