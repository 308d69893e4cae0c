"""Entity store collaborators — abstract interfaces plus in-memory backends.

The engine never talks to storage directly.  It consumes four narrow,
read-only capabilities:

- :class:`EntityDirectory` — permission-scoped lookup of candidate entities
- :class:`PermissionOracle` — secondary access check for shared-in entities
- :class:`AttributeFetcher` — attribute bags for resolved entities
- :class:`RecencyLog` — recently referenced entities, for suggestions

The in-memory implementations back the test suite and local wiring; a
database-backed deployment implements the same interfaces.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from models.entity import EntityCategory, EntityReference, LookupScope, LookupSource
from services.marker_scanner import normalize_name

logger = logging.getLogger(__name__)


# ── Abstract Interfaces ──────────────────────────────────────


class EntityDirectory(ABC):
    """Read-only, permission-scoped entity lookup."""

    @abstractmethod
    async def list_visible(
        self, category: EntityCategory, scope: LookupScope
    ) -> list[EntityReference]:
        """All entities of *category* visible within *scope*."""
        ...

    async def find_by_normalized_name(
        self, category: EntityCategory, normalized_key: str, scope: LookupScope
    ) -> list[EntityReference]:
        """Visible entities of *category* whose normalized name equals *normalized_key*.

        Backends with a name index should override this.
        """
        visible = await self.list_visible(category, scope)
        return [
            ref for ref in visible
            if normalize_name(ref.display_name) == normalized_key
        ]


class PermissionOracle(ABC):
    """Boolean access check, used for the cross-group tier."""

    @abstractmethod
    async def can_access(self, actor_id: str, ref: EntityReference) -> bool:
        ...


class AttributeFetcher(ABC):
    """Raw attribute bags for resolved entities."""

    @abstractmethod
    async def fetch_attributes(self, ref: EntityReference) -> dict[str, Any] | None:
        """Return the attribute bag for *ref*, or None if it no longer exists."""
        ...


class RecencyLog(ABC):
    """Most-recently referenced entities per actor."""

    @abstractmethod
    async def recent_references(
        self, actor_id: str, group_id: str | None, limit: int
    ) -> list[EntityReference]:
        ...


# ── In-Memory Implementation ────────────────────────────────


@dataclass
class EntityRecord:
    """A stored entity.

    ``group_id`` is the owning group (workspace); ``owner_id`` marks a
    personal-directory contact; ``parent_id`` links a work item to its
    structural group; ``shared_into`` lists groups a structural group is
    shared with.
    """

    ref: EntityReference
    group_id: str | None = None
    owner_id: str | None = None
    parent_id: str | None = None
    shared_into: frozenset[str] = frozenset()
    attributes: dict[str, Any] = field(default_factory=dict)


class InMemoryEntityStore(EntityDirectory, AttributeFetcher):
    """Dict-backed directory and attribute source.

    Visibility rules: group-scoped queries only return entities of groups
    the actor is a member of; personal-directory queries only return the
    actor's own contacts; shared-in queries return structural groups shared
    into the scope's group, re-tagged as ``cross_group_shared`` and left for
    the permission oracle to filter.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[EntityCategory, str], EntityRecord] = {}
        self._members: dict[str, set[str]] = defaultdict(set)

    # -- population --

    def add(self, record: EntityRecord) -> EntityRecord:
        self._records[(record.ref.category, record.ref.id)] = record
        return record

    def add_member(self, group_id: str, actor_id: str) -> None:
        self._members[group_id].add(actor_id)

    def is_member(self, group_id: str | None, actor_id: str) -> bool:
        return group_id is not None and actor_id in self._members.get(group_id, set())

    def get(self, category: EntityCategory, entity_id: str) -> EntityRecord | None:
        return self._records.get((category, entity_id))

    # -- EntityDirectory --

    async def list_visible(
        self, category: EntityCategory, scope: LookupScope
    ) -> list[EntityReference]:
        if scope.source == LookupSource.PERSONAL_DIRECTORY:
            return [
                r.ref for r in self._records.values()
                if r.ref.category == category and r.owner_id == scope.actor_id
            ]

        if scope.source == LookupSource.SHARED_IN:
            return [
                r.ref.model_copy(update={"category": EntityCategory.CROSS_GROUP_SHARED})
                for r in self._records.values()
                if r.ref.category == EntityCategory.STRUCTURAL_GROUP
                and scope.group_id in r.shared_into
                and r.group_id != scope.group_id
            ]

        if not self.is_member(scope.group_id, scope.actor_id):
            return []
        return [
            r.ref for r in self._records.values()
            if r.ref.category == category and r.group_id == scope.group_id
        ]

    # -- AttributeFetcher --

    async def fetch_attributes(self, ref: EntityReference) -> dict[str, Any] | None:
        category = ref.category
        if category == EntityCategory.CROSS_GROUP_SHARED:
            category = EntityCategory.STRUCTURAL_GROUP
        record = self._records.get((category, ref.id))
        if record is None:
            return None

        bag = dict(record.attributes)
        if category == EntityCategory.STRUCTURAL_GROUP:
            bag.setdefault("name", record.ref.display_name)
            bag.setdefault("item_count", self._count_items(record.ref.id))
            bag.setdefault("is_shared", bool(record.shared_into))
            bag.setdefault("source_group_id", record.group_id)
        elif category == EntityCategory.WORK_ITEM:
            bag.setdefault("title", record.ref.display_name)
            bag.setdefault("group_id", record.parent_id)
        elif category == EntityCategory.PERSON:
            bag.setdefault("name", record.ref.display_name)
            bag.setdefault("assignment_count", self._count_assignments(record.ref.id))
            bag.setdefault("is_group_member", record.group_id is not None)
            bag.setdefault("is_directory_contact", record.owner_id is not None)
        return bag

    def _count_items(self, group_entity_id: str) -> int:
        return sum(
            1 for r in self._records.values()
            if r.ref.category == EntityCategory.WORK_ITEM and r.parent_id == group_entity_id
        )

    def _count_assignments(self, person_id: str) -> int:
        return sum(
            1 for r in self._records.values()
            if r.ref.category == EntityCategory.WORK_ITEM
            and person_id in r.attributes.get("assignee_ids", ())
        )


class InMemoryPermissionOracle(PermissionOracle):
    """Membership-based access check over an :class:`InMemoryEntityStore`.

    A shared-in group is accessible when the actor is a member of the
    group that owns it.  Explicit denials win over membership.
    """

    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store
        self._denied: set[tuple[str, str]] = set()

    def deny(self, actor_id: str, entity_id: str) -> None:
        self._denied.add((actor_id, entity_id))

    async def can_access(self, actor_id: str, ref: EntityReference) -> bool:
        if (actor_id, ref.id) in self._denied:
            return False
        category = ref.category
        if category == EntityCategory.CROSS_GROUP_SHARED:
            category = EntityCategory.STRUCTURAL_GROUP
        record = self._store.get(category, ref.id)
        if record is None:
            return False
        if record.owner_id is not None:
            return record.owner_id == actor_id
        return self._store.is_member(record.group_id, actor_id)


class InMemoryRecencyLog(RecencyLog):
    """Append-only reference history, newest last."""

    def __init__(self) -> None:
        self._entries: list[tuple[str, str | None, EntityReference]] = []

    def record(self, actor_id: str, group_id: str | None, ref: EntityReference) -> None:
        self._entries.append((actor_id, group_id, ref))

    async def recent_references(
        self, actor_id: str, group_id: str | None, limit: int
    ) -> list[EntityReference]:
        seen: set[EntityReference] = set()
        result: list[EntityReference] = []
        for entry_actor, entry_group, ref in reversed(self._entries):
            if entry_actor != actor_id or entry_group != group_id or ref in seen:
                continue
            seen.add(ref)
            result.append(ref)
            if len(result) >= limit:
                break
        return result
