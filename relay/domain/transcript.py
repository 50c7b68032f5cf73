"""Domain records flowing from the normalizer through the intervention assembler."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


def utc_iso(value: datetime) -> str:
    """Millisecond UTC timestamp with a ``Z`` suffix, the format the provider sends.

    Naive datetimes are taken to be UTC already.
    """

    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return utc_iso(datetime.now(UTC))


class TranscriptProvider(str, Enum):
    """Payload shape a fragment was normalized from."""

    CAPTION = "caption"
    WORD_STREAM = "word-stream"

    @property
    def storage_name(self) -> str:
        """Provider name as stored on persisted interventions."""
        if self is TranscriptProvider.WORD_STREAM:
            return "deepgram_streaming"
        return "meeting_captions"


@dataclass(frozen=True)
class Speaker:
    """Talking participant. ``id`` is the merge key, ``name`` is display only."""

    id: int
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"Speaker {self.id}"


@dataclass(frozen=True)
class NormalizedFragment:
    """Uniform record for one speaker's text from either payload shape."""

    speaker: Speaker
    text: str
    timestamp: str
    is_partial: bool
    provider: TranscriptProvider
    # Seconds since recording start, when the provider only sent a relative time
    start_offset: float | None = None


@dataclass
class Intervention:
    """A speaker turn being assembled from fragments.

    Mutable while open; snapshots handed to subscribers are copies.
    """

    speaker: Speaker
    provider: TranscriptProvider
    started_at: str
    last_fragment_at: float
    accumulated_text: str = ""
    fragments: list[str] = field(default_factory=list)
    is_partial: bool = True
    id: str = field(default_factory=lambda: uuid4().hex)

    def snapshot(self) -> Intervention:
        return replace(self, fragments=list(self.fragments))

    def to_payload(self) -> dict:
        """Client-facing representation used on the websocket."""
        return {
            "id": self.id,
            "participant": {"name": self.speaker.display_name, "id": self.speaker.id},
            "text": self.accumulated_text,
            "timestamp": self.started_at,
            "isPartial": self.is_partial,
            "provider": self.provider.value,
        }


class AssemblerEventType(str, Enum):
    UPDATED = "intervention.updated"
    FINALIZED = "intervention.finalized"


@dataclass(frozen=True)
class AssemblerEvent:
    """Emitted by the assembler for live display (updated) and persistence (finalized)."""

    type: AssemblerEventType
    bot_id: str
    intervention: Intervention


@dataclass
class IngestResult:
    """What one ``ingest`` call did to a session, events in emission order."""

    opened: Intervention | None = None
    events: list[AssemblerEvent] = field(default_factory=list)
    dropped: bool = False

    @property
    def updated(self) -> Intervention | None:
        for event in reversed(self.events):
            if event.type is AssemblerEventType.UPDATED:
                return event.intervention
        return None

    @property
    def finalized(self) -> list[Intervention]:
        return [
            event.intervention
            for event in self.events
            if event.type is AssemblerEventType.FINALIZED
        ]
