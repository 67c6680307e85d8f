"""Fixtures for the MII scoring tests."""

from __future__ import annotations

from uuid import UUID

import pytest
from uuid_extensions import uuid7

from mii.scoring.stores import InMemoryEntityStore, InMemorySnapshotStore

from mii_factories import make_municipality, reference_entities


@pytest.fixture
def reference_id() -> UUID:
    return uuid7()


@pytest.fixture
def entity_store(reference_id: UUID) -> InMemoryEntityStore:
    """Reference municipality plus two already-scored peers (90 and 30)."""
    challenges, pilots, partnerships = reference_entities(reference_id)
    return InMemoryEntityStore(
        municipalities=[
            make_municipality(reference_id, name_en="Reference"),
            make_municipality(name_en="Leader", mii_score=90.0),
            make_municipality(name_en="Laggard", mii_score=30.0),
        ],
        challenges=challenges,
        pilots=pilots,
        partnerships=partnerships,
    )


@pytest.fixture
def snapshot_store(entity_store: InMemoryEntityStore) -> InMemorySnapshotStore:
    return InMemorySnapshotStore(entity_store)
