"""Tests for the in-process recalculation EventBus."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from uuid_extensions import uuid7

from mii.scoring.events import EventBus, MIIRecalculated


def _event() -> MIIRecalculated:
    return MIIRecalculated(
        municipality_id=uuid7(),
        snapshot_id=uuid7(),
        overall_score=47.25,
        rank=2,
        as_of=datetime(2025, 3, 1, tzinfo=timezone.utc),
    )


class TestEventBus:
    @pytest.mark.anyio
    async def test_delivers_to_all_subscribers(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def first(event: MIIRecalculated) -> None:
            seen.append("first")

        async def second(event: MIIRecalculated) -> None:
            seen.append("second")

        bus.subscribe(first)
        bus.subscribe(second)
        await bus.publish(_event())
        assert seen == ["first", "second"]

    @pytest.mark.anyio
    async def test_failing_subscriber_does_not_block_others(self) -> None:
        bus = EventBus()
        seen: list[MIIRecalculated] = []

        async def broken(event: MIIRecalculated) -> None:
            raise RuntimeError("cache offline")

        async def healthy(event: MIIRecalculated) -> None:
            seen.append(event)

        bus.subscribe(broken)
        bus.subscribe(healthy)
        event = _event()
        await bus.publish(event)
        assert seen == [event]

    @pytest.mark.anyio
    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[MIIRecalculated] = []

        async def handler(event: MIIRecalculated) -> None:
            seen.append(event)

        bus.subscribe(handler)
        bus.unsubscribe(handler)
        await bus.publish(_event())
        assert seen == []
