"""Per-bot state machine that turns transcript fragments into speaker interventions.

Each bot session is either idle or has exactly one open intervention. A
fragment for the open speaker is merged in; a fragment for anyone else
closes the open intervention first. Interventions are finalized by a
definitive ("final") fragment, a speaker change, an idle timeout or a
manual flush, and each is emitted as finalized exactly once.

All methods must be called from the event loop thread; there is no locking.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from relay.core.logging import get_logger
from relay.domain.transcript import (
    AssemblerEvent,
    AssemblerEventType,
    IngestResult,
    Intervention,
    NormalizedFragment,
)

logger = get_logger(__name__)

AssemblerListener = Callable[[AssemblerEvent], None]

DEFAULT_IDLE_TIMEOUT_SECONDS = 5.0
DEFAULT_DUPLICATE_WINDOW_SECONDS = 1.0


def merge_fragment_text(old: str, new: str) -> str:
    """Merge a fragment into accumulated text without duplicating re-sent phrases.

    Streaming providers re-send growing partials that contain the previous
    text, caption providers re-send the same phrase verbatim.
    """

    if not old:
        return new
    if not new:
        return old
    if old in new:
        return new
    if new in old:
        return old
    return f"{old} {new}"


@dataclass(frozen=True)
class _AcceptedFragment:
    speaker_id: int
    text: str
    at: float


class SessionAssembler:
    """Intervention state for one bot session."""

    def __init__(
        self,
        bot_id: str,
        emit: AssemblerListener,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        duplicate_window: float = DEFAULT_DUPLICATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bot_id = bot_id
        self._emit = emit
        self._idle_timeout = idle_timeout
        self._duplicate_window = duplicate_window
        self._clock = clock
        self._open: Intervention | None = None
        self._last_accepted: _AcceptedFragment | None = None
        self._idle_task: asyncio.Task[None] | None = None

    @property
    def open_intervention(self) -> Intervention | None:
        return self._open.snapshot() if self._open is not None else None

    def _is_retransmission(self, fragment: NormalizedFragment, now: float) -> bool:
        last = self._last_accepted
        return (
            fragment.is_partial
            and last is not None
            and last.speaker_id == fragment.speaker.id
            and last.text == fragment.text
            and now - last.at <= self._duplicate_window
        )

    def ingest(self, fragment: NormalizedFragment) -> IngestResult:
        now = self._clock()
        if self._is_retransmission(fragment, now):
            logger.debug(
                "Dropping retransmitted fragment",
                extra={
                    "component": "intervention_assembler",
                    "operation": "dedupe",
                    "item_id": self.bot_id,
                    "context_data": {"speaker_id": fragment.speaker.id},
                },
            )
            return IngestResult(dropped=True)

        result = IngestResult()

        if self._open is not None and self._open.speaker.id != fragment.speaker.id:
            result.events.append(self._finalize("speaker_change"))

        if self._open is None:
            self._open = Intervention(
                speaker=fragment.speaker,
                provider=fragment.provider,
                started_at=fragment.timestamp,
                last_fragment_at=now,
                accumulated_text=fragment.text,
                fragments=[fragment.text],
            )
            result.opened = self._open.snapshot()
        else:
            current = self._open
            current.accumulated_text = merge_fragment_text(current.accumulated_text, fragment.text)
            current.fragments.append(fragment.text)
            current.last_fragment_at = now
            if fragment.speaker.name and not current.speaker.name:
                current.speaker = fragment.speaker

        self._last_accepted = _AcceptedFragment(fragment.speaker.id, fragment.text, now)
        result.events.append(self._event(AssemblerEventType.UPDATED, self._open.snapshot()))

        if fragment.is_partial:
            self._schedule_idle_finalize()
        else:
            result.events.append(self._finalize("final_fragment"))

        for event in result.events:
            self._emit(event)
        return result

    def finalize(self, reason: str = "manual") -> Intervention | None:
        """Finalize the open intervention, if any, and emit it."""

        if self._open is None:
            return None
        event = self._finalize(reason)
        self._emit(event)
        return event.intervention

    def close(self) -> None:
        self._cancel_idle_task()

    def _event(self, event_type: AssemblerEventType, intervention: Intervention) -> AssemblerEvent:
        return AssemblerEvent(type=event_type, bot_id=self.bot_id, intervention=intervention)

    def _finalize(self, reason: str) -> AssemblerEvent:
        self._cancel_idle_task()
        intervention = self._open
        assert intervention is not None
        self._open = None
        intervention.is_partial = False

        logger.info(
            "Intervention finalized",
            extra={
                "component": "intervention_assembler",
                "operation": "finalize",
                "item_id": self.bot_id,
                "context_data": {
                    "reason": reason,
                    "intervention_id": intervention.id,
                    "speaker_id": intervention.speaker.id,
                    "fragments": len(intervention.fragments),
                    "chars": len(intervention.accumulated_text),
                },
            },
        )
        return self._event(AssemblerEventType.FINALIZED, intervention.snapshot())

    def _cancel_idle_task(self) -> None:
        task = self._idle_task
        self._idle_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _schedule_idle_finalize(self) -> None:
        self._cancel_idle_task()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Synchronous callers (scripts, sync tests) only get explicit finalization
            return
        assert self._open is not None
        self._idle_task = loop.create_task(
            self._finalize_when_idle(self._open.id),
            name=f"idle-finalize-{self.bot_id}",
        )

    async def _finalize_when_idle(self, intervention_id: str) -> None:
        await asyncio.sleep(self._idle_timeout)
        if self._open is None or self._open.id != intervention_id:
            return
        self._idle_task = None
        self.finalize("idle_timeout")


class InterventionAssembler:
    """Owns one ``SessionAssembler`` per bot and fans events out to listeners."""

    def __init__(
        self,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        duplicate_window: float = DEFAULT_DUPLICATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._idle_timeout = idle_timeout
        self._duplicate_window = duplicate_window
        self._clock = clock
        self._sessions: dict[str, SessionAssembler] = {}
        self._listeners: list[AssemblerListener] = []

    def subscribe(self, listener: AssemblerListener) -> None:
        self._listeners.append(listener)

    def _dispatch(self, event: AssemblerEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Assembler listener failed",
                    extra={
                        "component": "intervention_assembler",
                        "operation": "dispatch",
                        "item_id": event.bot_id,
                        "context_data": {"event_type": event.type.value},
                    },
                )

    def session(self, bot_id: str) -> SessionAssembler:
        state = self._sessions.get(bot_id)
        if state is None:
            state = SessionAssembler(
                bot_id,
                self._dispatch,
                idle_timeout=self._idle_timeout,
                duplicate_window=self._duplicate_window,
                clock=self._clock,
            )
            self._sessions[bot_id] = state
        return state

    def ingest(self, bot_id: str, fragment: NormalizedFragment) -> IngestResult:
        return self.session(bot_id).ingest(fragment)

    def finalize(self, bot_id: str, reason: str = "manual") -> Intervention | None:
        state = self._sessions.get(bot_id)
        if state is None:
            return None
        return state.finalize(reason)

    def open_intervention(self, bot_id: str) -> Intervention | None:
        state = self._sessions.get(bot_id)
        return state.open_intervention if state is not None else None

    def flush_all(self, reason: str = "shutdown") -> list[Intervention]:
        """Finalize every open intervention and stop all idle timers."""

        finalized: list[Intervention] = []
        for state in self._sessions.values():
            intervention = state.finalize(reason)
            if intervention is not None:
                finalized.append(intervention)
            state.close()
        return finalized

    def discard(self, bot_id: str, reason: str = "discarded") -> Intervention | None:
        """Finalize any open intervention for ``bot_id`` and forget its state."""

        state = self._sessions.pop(bot_id, None)
        if state is None:
            return None
        intervention = state.finalize(reason)
        state.close()
        return intervention

    def bot_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
