"""Error taxonomy for the MII engine.

- NotFoundError: unknown municipality. Not retried.
- InvalidSeriesError: malformed score history. Not retried.
- TransientError: entity store timed out or is unavailable. Retried.
- ComputationError: unexpected internal failure. Carries the municipality id.
"""

from __future__ import annotations

from uuid import UUID


class MIIError(Exception):
    """Base class for all MII engine errors."""

    retryable: bool = False

    def __init__(self, message: str, *, municipality_id: UUID | None = None) -> None:
        super().__init__(message)
        self.municipality_id = municipality_id


class NotFoundError(MIIError):
    """The requested municipality does not exist in the entity store."""


class InvalidSeriesError(MIIError):
    """Historical snapshots are unordered, duplicated, or empty."""


class TransientError(MIIError):
    """The entity store is unavailable or timed out."""

    retryable = True


class ComputationError(MIIError):
    """Unexpected failure while aggregating or scoring."""
