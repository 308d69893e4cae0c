"""Shared pytest fixtures for the tag context engine.

Provides an in-memory workspace:

- group ``g-launch`` (active group): tracks, items, people
- group ``g-partner``: alice is a member; shares tracks into ``g-launch``
- group ``g-hidden``: alice is *not* a member; shares tracks into ``g-launch``

Fixtures:
- ``store`` / ``permissions``: populated in-memory collaborators
- ``recording_store``: same data, records every directory query
- ``access``: alice's access context in ``g-launch``
- ``metrics_collector``: fresh collector per test
"""

from __future__ import annotations

import pytest

from models.entity import AccessContext, EntityCategory, EntityReference, LookupScope
from services.entity_store import (
    EntityRecord,
    InMemoryEntityStore,
    InMemoryPermissionOracle,
    InMemoryRecencyLog,
)
from services.metrics import MetricsCollector

ALICE = "u-alice"
BOB = "u-bob"
ACTIVE_GROUP = "g-launch"

G = EntityCategory.STRUCTURAL_GROUP
W = EntityCategory.WORK_ITEM
P = EntityCategory.PERSON


def ref(category: EntityCategory, entity_id: str, name: str) -> EntityReference:
    return EntityReference(category=category, id=entity_id, display_name=name)


class RecordingStore(InMemoryEntityStore):
    """In-memory store that records ``(category, key, source)`` per name lookup."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str, str]] = []

    async def find_by_normalized_name(self, category, normalized_key, scope: LookupScope):
        self.calls.append((category.value, normalized_key, scope.source.value))
        return await super().find_by_normalized_name(category, normalized_key, scope)

    def queried_keys(self) -> set[str]:
        return {key for _, key, _ in self.calls}


def populate(store: InMemoryEntityStore) -> InMemoryEntityStore:
    store.add_member(ACTIVE_GROUP, ALICE)
    store.add_member(ACTIVE_GROUP, BOB)
    store.add_member("g-partner", ALICE)
    store.add_member("g-hidden", BOB)

    # Structural groups in the active group
    store.add(EntityRecord(
        ref=ref(G, "sg-mkt", "Marketing Plan"),
        group_id=ACTIVE_GROUP,
        attributes={"description": "Q3 go-to-market plan", "color": "blue"},
    ))
    store.add(EntityRecord(ref=ref(G, "sg-launch-1", "Launch"), group_id=ACTIVE_GROUP))
    store.add(EntityRecord(ref=ref(G, "sg-launch-2", "LAUNCH!"), group_id=ACTIVE_GROUP))
    store.add(EntityRecord(ref=ref(G, "sg-cal", "Calendar"), group_id=ACTIVE_GROUP))
    store.add(EntityRecord(ref=ref(G, "sg-design", "Design"), group_id=ACTIVE_GROUP))

    # Work items
    store.add(EntityRecord(
        ref=ref(W, "wi-wedding", "Rachel's Wedding Day"),
        group_id=ACTIVE_GROUP,
        parent_id="sg-mkt",
        attributes={
            "item_type": "event",
            "status": "planned",
            "deadline": "2025-06-15",
            "assignee_ids": ["p-john"],
        },
    ))
    store.add(EntityRecord(
        ref=ref(W, "wi-budget", "Budget Review"),
        group_id=ACTIVE_GROUP,
        parent_id="sg-mkt",
        attributes={"item_type": "task", "estimated_duration": 3, "assignee_ids": ["p-john"]},
    ))
    store.add(EntityRecord(ref=ref(W, "wi-design", "Design"), group_id=ACTIVE_GROUP))

    # People
    store.add(EntityRecord(
        ref=ref(P, "p-john", "John Doe"),
        group_id=ACTIVE_GROUP,
        attributes={"role": "Developer"},
    ))
    store.add(EntityRecord(ref=ref(P, "c-jane", "Jane Smith"), owner_id=ALICE))
    store.add(EntityRecord(ref=ref(P, "c-secret", "Secret Contact"), owner_id=BOB))

    # Shared in from other groups
    store.add(EntityRecord(
        ref=ref(G, "sg-partner-rm", "Partner Roadmap"),
        group_id="g-partner",
        shared_into=frozenset({ACTIVE_GROUP}),
        attributes={"description": "Joint roadmap"},
    ))
    store.add(EntityRecord(
        ref=ref(G, "sg-offsite-ok", "Offsite"),
        group_id="g-partner",
        shared_into=frozenset({ACTIVE_GROUP}),
    ))
    store.add(EntityRecord(
        ref=ref(G, "sg-offsite-hidden", "Offsite"),
        group_id="g-hidden",
        shared_into=frozenset({ACTIVE_GROUP}),
    ))
    store.add(EntityRecord(
        ref=ref(G, "sg-hidden", "Hidden Plans"),
        group_id="g-hidden",
        shared_into=frozenset({ACTIVE_GROUP}),
    ))
    store.add(EntityRecord(ref=ref(G, "sg-classified", "Classified"), group_id="g-hidden"))
    return store


@pytest.fixture
def store() -> InMemoryEntityStore:
    return populate(InMemoryEntityStore())


@pytest.fixture
def recording_store() -> RecordingStore:
    return populate(RecordingStore())


@pytest.fixture
def permissions(store: InMemoryEntityStore) -> InMemoryPermissionOracle:
    return InMemoryPermissionOracle(store)


@pytest.fixture
def recency_log() -> InMemoryRecencyLog:
    return InMemoryRecencyLog()


@pytest.fixture
def access() -> AccessContext:
    """Alice in the active group, every category allowed."""
    return AccessContext(actor_id=ALICE, active_group_id=ACTIVE_GROUP)


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """Fresh metrics collector — isolated per test."""
    return MetricsCollector()
