"""Shared helpers for MII persistence.

Repositories call add()/flush()/refresh() only — never commit().
The session dependency handles commit/rollback (Unit-of-Work).

Database unavailability is translated into ``TransientError`` here so
the orchestrator's retry policy sees one error type regardless of driver.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from mii.scoring.errors import TransientError


@asynccontextmanager
async def translate_unavailable() -> AsyncIterator[None]:
    """Re-raise connection-level database failures as TransientError."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        raise TransientError(f"Entity store unavailable: {exc}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientError(f"Entity store connection lost: {exc}") from exc
        raise


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
