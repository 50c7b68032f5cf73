"""Classify raw provider transcript payloads and convert them to fragments.

Two shapes arrive on the webhook:

- caption arrays: ``[{"participant": {...}, "words": [...]}, ...]`` (older
  caption frames may carry flat ``speaker``/``text`` keys instead)
- word streams: ``{"participant": {...}, "words": [...]}`` for one speaker

Anything else is dropped. The provider is outside our control and sends
malformed frames now and then, so nothing in here raises.
"""

from __future__ import annotations

from typing import Any, Literal

from relay.core.logging import get_logger
from relay.domain.transcript import NormalizedFragment, Speaker, TranscriptProvider, utc_now_iso

logger = get_logger(__name__)

FragmentKind = Literal["final", "partial"]

WEBHOOK_EVENT_KINDS: dict[str, FragmentKind] = {
    "transcript.data": "final",
    "transcript.partial_data": "partial",
}


def fragment_kind_for_event(event_name: str) -> FragmentKind | None:
    """Map a webhook event name to a fragment kind, ``None`` for non-transcript events."""

    return WEBHOOK_EVENT_KINDS.get(event_name)


def _coerce_speaker_id(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return 0


def _speaker_from_participant(participant: dict[str, Any]) -> Speaker:
    name = participant.get("name")
    return Speaker(
        id=_coerce_speaker_id(participant.get("id")),
        name=name.strip() if isinstance(name, str) and name.strip() else None,
    )


def _join_words(words: list[Any]) -> str:
    texts = [
        word["text"].strip()
        for word in words
        if isinstance(word, dict) and isinstance(word.get("text"), str) and word["text"].strip()
    ]
    return " ".join(texts)


def _first_word_start(words: list[Any]) -> tuple[str | None, float | None]:
    """Return (absolute ISO time, relative seconds) of the first word, when present."""

    if not words or not isinstance(words[0], dict):
        return None, None
    start = words[0].get("start_timestamp")
    if not isinstance(start, dict):
        return None, None

    absolute = start.get("absolute")
    relative = start.get("relative")
    absolute_value = absolute if isinstance(absolute, str) and absolute else None
    relative_value = (
        float(relative)
        if isinstance(relative, (int, float)) and not isinstance(relative, bool)
        else None
    )
    return absolute_value, relative_value


def _has_word_shape(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and isinstance(payload.get("participant"), dict)
        and isinstance(payload.get("words"), list)
    )


def _fragment_from_words(
    item: dict[str, Any],
    *,
    is_partial: bool,
    provider: TranscriptProvider,
) -> NormalizedFragment | None:
    words = item["words"]
    text = _join_words(words)
    if not text:
        return None

    absolute, relative = _first_word_start(words)
    return NormalizedFragment(
        speaker=_speaker_from_participant(item["participant"]),
        text=text,
        timestamp=absolute or utc_now_iso(),
        is_partial=is_partial,
        provider=provider,
        start_offset=relative,
    )


def _fragment_from_flat_caption(item: dict[str, Any], *, is_partial: bool) -> NormalizedFragment | None:
    text = item.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    name = item.get("speaker")
    timestamp = item.get("timestamp")
    return NormalizedFragment(
        speaker=Speaker(
            id=_coerce_speaker_id(item.get("speaker_id")),
            name=name.strip() if isinstance(name, str) and name.strip() else None,
        ),
        text=text.strip(),
        timestamp=timestamp if isinstance(timestamp, str) and timestamp else utc_now_iso(),
        is_partial=is_partial,
        provider=TranscriptProvider.CAPTION,
    )


def normalize(event: FragmentKind, raw_payload: Any) -> list[NormalizedFragment]:
    """Convert a raw transcript payload into normalized fragments.

    Args:
        event: ``"final"`` or ``"partial"``; sets ``is_partial`` on every fragment.
        raw_payload: The ``data.data`` object from the webhook envelope.

    Returns:
        One fragment per caption element, exactly one for a word stream, or an
        empty list when the payload matches neither shape.
    """

    is_partial = event == "partial"

    if isinstance(raw_payload, list):
        fragments: list[NormalizedFragment] = []
        for index, item in enumerate(raw_payload):
            fragment: NormalizedFragment | None = None
            if _has_word_shape(item):
                fragment = _fragment_from_words(
                    item, is_partial=is_partial, provider=TranscriptProvider.CAPTION
                )
            elif isinstance(item, dict):
                fragment = _fragment_from_flat_caption(item, is_partial=is_partial)

            if fragment is None:
                logger.debug("Skipping unusable caption element %s", index)
                continue
            fragments.append(fragment)
        return fragments

    if _has_word_shape(raw_payload):
        fragment = _fragment_from_words(
            raw_payload, is_partial=is_partial, provider=TranscriptProvider.WORD_STREAM
        )
        return [fragment] if fragment is not None else []

    logger.warning(
        "Unrecognized transcript payload shape",
        extra={
            "component": "transcript_normalizer",
            "operation": "normalize",
            "context_data": {
                "event": event,
                "payload_type": type(raw_payload).__name__,
                "keys": sorted(raw_payload.keys())[:10] if isinstance(raw_payload, dict) else None,
            },
        },
    )
    return []
