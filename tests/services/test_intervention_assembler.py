"""Tests for the intervention assembler state machine."""

from __future__ import annotations

import asyncio

import pytest

from relay.domain.transcript import (
    AssemblerEvent,
    AssemblerEventType,
    NormalizedFragment,
    Speaker,
    TranscriptProvider,
)
from relay.services.intervention_assembler import InterventionAssembler, merge_fragment_text

BOT = "bot-1"


class ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fragment(
    speaker_id: int,
    text: str,
    *,
    partial: bool = True,
    name: str | None = None,
    provider: TranscriptProvider = TranscriptProvider.WORD_STREAM,
) -> NormalizedFragment:
    return NormalizedFragment(
        speaker=Speaker(id=speaker_id, name=name),
        text=text,
        timestamp="2024-05-01T10:00:00Z",
        is_partial=partial,
        provider=provider,
    )


def make_assembler(clock: ManualClock | None = None, idle_timeout: float = 5.0):
    events: list[AssemblerEvent] = []
    assembler = InterventionAssembler(
        idle_timeout=idle_timeout,
        duplicate_window=1.0,
        clock=clock or ManualClock(),
    )
    assembler.subscribe(events.append)
    return assembler, events


def summary(events: list[AssemblerEvent]) -> list[tuple[str, int, str]]:
    return [
        (
            "finalized" if e.type is AssemblerEventType.FINALIZED else "updated",
            e.intervention.speaker.id,
            e.intervention.accumulated_text,
        )
        for e in events
    ]


class TestMergeFragmentText:
    def test_extension_replaces(self) -> None:
        assert merge_fragment_text("Hello", "Hello world") == "Hello world"

    def test_stale_subset_is_ignored(self) -> None:
        assert merge_fragment_text("Hello world", "Hello") == "Hello world"

    def test_verbatim_repeat_is_ignored(self) -> None:
        assert merge_fragment_text("Hello world", "Hello world") == "Hello world"

    def test_unrelated_text_is_appended(self) -> None:
        assert merge_fragment_text("Hello world", "How are you") == "Hello world How are you"

    def test_empty_sides(self) -> None:
        assert merge_fragment_text("", "Hi") == "Hi"
        assert merge_fragment_text("Hi", "") == "Hi"


def test_growing_partials_end_with_longest_text() -> None:
    """Same-speaker extensions never duplicate text."""

    clock = ManualClock()
    assembler, _ = make_assembler(clock)
    for text in ["I", "I think", "I think we", "I think we should ship"]:
        clock.advance(2.0)
        assembler.ingest(BOT, fragment(1, text))

    open_intervention = assembler.open_intervention(BOT)
    assert open_intervention is not None
    assert open_intervention.accumulated_text == "I think we should ship"
    assert open_intervention.fragments == ["I", "I think", "I think we", "I think we should ship"]


def test_identical_partial_within_window_is_dropped() -> None:
    clock = ManualClock()
    assembler, events = make_assembler(clock)

    first = assembler.ingest(BOT, fragment(1, "Hello"))
    before = assembler.open_intervention(BOT)
    clock.advance(0.5)
    second = assembler.ingest(BOT, fragment(1, "Hello"))
    after = assembler.open_intervention(BOT)

    assert first.dropped is False
    assert second.dropped is True
    assert second.events == []
    assert len(events) == 1
    assert after.fragments == before.fragments
    assert after.last_fragment_at == before.last_fragment_at


def test_identical_partial_after_window_is_accepted() -> None:
    clock = ManualClock()
    assembler, events = make_assembler(clock)

    assembler.ingest(BOT, fragment(1, "Hello"))
    clock.advance(1.5)
    result = assembler.ingest(BOT, fragment(1, "Hello"))

    assert result.dropped is False
    assert len(events) == 2
    assert assembler.open_intervention(BOT).accumulated_text == "Hello"


def test_identical_final_fragment_is_not_deduplicated() -> None:
    clock = ManualClock()
    assembler, events = make_assembler(clock)

    assembler.ingest(BOT, fragment(1, "Hello"))
    result = assembler.ingest(BOT, fragment(1, "Hello", partial=False))

    assert result.dropped is False
    assert [i.accumulated_text for i in result.finalized] == ["Hello"]


def test_speaker_change_finalizes_previous_before_opening_next() -> None:
    """{A,"Hi"} then {B,"Hey"} emits finalized(A) immediately followed by updated(B)."""

    assembler, events = make_assembler()

    assembler.ingest(BOT, fragment(1, "Hi"))
    result = assembler.ingest(BOT, fragment(2, "Hey"))

    assert summary(events) == [
        ("updated", 1, "Hi"),
        ("finalized", 1, "Hi"),
        ("updated", 2, "Hey"),
    ]
    assert events[1].intervention.is_partial is False
    assert events[2].intervention.is_partial is True
    assert result.opened is not None and result.opened.speaker.id == 2
    assert [i.speaker.id for i in result.finalized] == [1]


def test_final_fragment_closes_after_merging() -> None:
    assembler, events = make_assembler()

    assembler.ingest(BOT, fragment(1, "Hello"))
    result = assembler.ingest(BOT, fragment(1, "Hello world.", partial=False))

    assert assembler.open_intervention(BOT) is None
    assert summary(result.events) == [("updated", 1, "Hello world."), ("finalized", 1, "Hello world.")]
    assert result.finalized[0].is_partial is False


def test_final_fragment_for_new_speaker_finalizes_both() -> None:
    assembler, events = make_assembler()

    assembler.ingest(BOT, fragment(1, "Hi"))
    result = assembler.ingest(BOT, fragment(2, "Hello there", partial=False))

    assert [(i.speaker.id, i.accumulated_text) for i in result.finalized] == [
        (1, "Hi"),
        (2, "Hello there"),
    ]
    assert assembler.open_intervention(BOT) is None


def test_manual_finalize_is_noop_when_idle() -> None:
    assembler, events = make_assembler()

    assert assembler.finalize(BOT) is None
    assembler.ingest(BOT, fragment(1, "Hello", partial=False))
    assert assembler.finalize(BOT) is None
    assert len([e for e in events if e.type is AssemblerEventType.FINALIZED]) == 1


def test_manual_finalize_emits_exactly_once() -> None:
    assembler, events = make_assembler()

    assembler.ingest(BOT, fragment(1, "Wrap up"))
    finalized = assembler.finalize(BOT)
    again = assembler.finalize(BOT)

    assert finalized is not None and finalized.accumulated_text == "Wrap up"
    assert again is None
    assert [e.type for e in events].count(AssemblerEventType.FINALIZED) == 1


def test_sessions_are_independent_per_bot() -> None:
    assembler, events = make_assembler()

    assembler.ingest("bot-a", fragment(1, "from a"))
    assembler.ingest("bot-b", fragment(2, "from b"))

    assert [e.type for e in events] == [AssemblerEventType.UPDATED, AssemblerEventType.UPDATED]
    assert assembler.open_intervention("bot-a").accumulated_text == "from a"
    assert assembler.open_intervention("bot-b").accumulated_text == "from b"


def test_late_name_fills_unnamed_speaker() -> None:
    assembler, _ = make_assembler()

    assembler.ingest(BOT, fragment(4, "Hi"))
    assembler.ingest(BOT, fragment(4, "Hi all", name="Grace"))

    assert assembler.open_intervention(BOT).speaker.display_name == "Grace"


def test_snapshots_are_not_mutated_by_later_fragments() -> None:
    assembler, events = make_assembler()

    assembler.ingest(BOT, fragment(1, "One"))
    assembler.ingest(BOT, fragment(1, "One two"))

    assert events[0].intervention.accumulated_text == "One"
    assert events[0].intervention.fragments == ["One"]


def test_failing_listener_does_not_stop_others() -> None:
    assembler, events = make_assembler()

    def broken(_event: AssemblerEvent) -> None:
        raise RuntimeError("boom")

    assembler.subscribe(broken)
    later: list[AssemblerEvent] = []
    assembler.subscribe(later.append)

    assembler.ingest(BOT, fragment(1, "Still delivered"))

    assert len(events) == 1
    assert len(later) == 1


@pytest.mark.asyncio
async def test_idle_timeout_finalizes_exactly_once() -> None:
    """{A,"Hello"}, {A,"Hello world"} then silence yields one finalized "Hello world"."""

    assembler, events = make_assembler(idle_timeout=0.05)

    assembler.ingest(BOT, fragment(1, "Hello"))
    assembler.ingest(BOT, fragment(1, "Hello world"))
    await asyncio.sleep(0.2)

    finalized = [e for e in events if e.type is AssemblerEventType.FINALIZED]
    assert len(finalized) == 1
    assert finalized[0].intervention.accumulated_text == "Hello world"
    assert finalized[0].intervention.is_partial is False
    assert assembler.open_intervention(BOT) is None


@pytest.mark.asyncio
async def test_each_fragment_restarts_idle_timer() -> None:
    assembler, events = make_assembler(idle_timeout=0.15)

    assembler.ingest(BOT, fragment(1, "a"))
    await asyncio.sleep(0.1)
    assembler.ingest(BOT, fragment(1, "a b"))
    await asyncio.sleep(0.1)

    assert assembler.open_intervention(BOT) is not None
    await asyncio.sleep(0.15)
    assert assembler.open_intervention(BOT) is None
    assert [e.type for e in events].count(AssemblerEventType.FINALIZED) == 1


@pytest.mark.asyncio
async def test_finalize_cancels_pending_idle_timer() -> None:
    assembler, events = make_assembler(idle_timeout=0.05)

    assembler.ingest(BOT, fragment(1, "Hello"))
    assembler.finalize(BOT)
    await asyncio.sleep(0.15)

    assert [e.type for e in events].count(AssemblerEventType.FINALIZED) == 1


@pytest.mark.asyncio
async def test_flush_all_finalizes_every_open_session() -> None:
    assembler, events = make_assembler(idle_timeout=10)

    assembler.ingest("bot-a", fragment(1, "a"))
    assembler.ingest("bot-b", fragment(2, "b"))
    flushed = assembler.flush_all()

    assert sorted(i.accumulated_text for i in flushed) == ["a", "b"]
    assert assembler.open_intervention("bot-a") is None
    assert assembler.open_intervention("bot-b") is None


@pytest.mark.asyncio
async def test_discard_finalizes_and_forgets_the_bot() -> None:
    assembler, events = make_assembler(idle_timeout=0.05)
    assembler.ingest("bot-a", fragment(1, "half a thought"))
    assembler.ingest("bot-b", fragment(2, "b"))

    discarded = assembler.discard("bot-a", reason="connection_closed")
    await asyncio.sleep(0.1)

    assert discarded.accumulated_text == "half a thought"
    assert discarded.is_partial is False
    assert assembler.bot_ids() == ["bot-b"]
    assert assembler.discard("bot-a") is None
    finalized_a = [e for e in events if e.bot_id == "bot-a" and e.type is AssemblerEventType.FINALIZED]
    assert len(finalized_a) == 1


def test_discard_of_idle_session_emits_nothing() -> None:
    assembler, events = make_assembler()
    assembler.ingest(BOT, fragment(1, "Done.", partial=False))
    events.clear()

    assert assembler.discard(BOT) is None
    assert events == []
    assert len(assembler) == 0
