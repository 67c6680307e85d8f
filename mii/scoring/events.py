"""Recalculation events.

The orchestrator publishes ``MIIRecalculated`` after a snapshot commits.
Read paths that cache views subscribe here and drop only the entries for
the affected municipality.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MIIRecalculated:
    municipality_id: UUID
    snapshot_id: UUID
    overall_score: float
    rank: int | None
    as_of: datetime


Subscriber = Callable[[MIIRecalculated], Awaitable[None]]


class EventBus:
    """In-process publish/subscribe for recalculation events."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.remove(subscriber)

    async def publish(self, event: MIIRecalculated) -> None:
        """Deliver ``event`` to every subscriber.

        The snapshot is already committed when this runs, so a failing
        subscriber is logged and the remaining subscribers still run.
        """
        for subscriber in list(self._subscribers):
            try:
                await subscriber(event)
            except Exception:
                logger.exception(
                    "MII event subscriber failed for municipality %s",
                    event.municipality_id,
                )
