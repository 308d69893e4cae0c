"""Entity resolver — deterministic, tiered matching of marker keys.

Resolves each normalized marker key to exactly one of *resolved*,
*ambiguous* or *unresolved* by walking the entity tiers in priority order:

1. **System** entities (calendar, tasks, ...) — fixed table, wins outright
2. **Structural groups** of the active group
3. **Work items** of the active group
4. **People** of the active group, then the actor's personal directory
5. **Cross-group shared** groups, each passed through the permission oracle

The first tier with a surviving candidate decides.  One survivor resolves
the key; several survivors at that same tier make it ambiguous.  Matches
in lower tiers are never consulted once a higher tier has matched, so a
group and a work item with the same name are not an ambiguity.

Matching is exact on normalized names only (no fuzzy matching).  Every
lookup is scoped by the request's :class:`AccessContext` at the source, so
an entity the actor cannot see never becomes a candidate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from errors.exceptions import EntityLookupError
from models.entity import (
    AccessContext,
    EntityCategory,
    EntityReference,
    LookupScope,
    LookupSource,
    ResolutionOutcome,
    ResolutionStatus,
)
from services.entity_store import EntityDirectory, PermissionOracle
from services.metrics import MetricsCollector

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SystemEntity:
    """A fixed, non-tenant concept addressable by marker."""

    key: str
    name: str
    description: str
    subtitle: str
    scope_flag: str | None = None

    @property
    def ref(self) -> EntityReference:
        return EntityReference(category=EntityCategory.SYSTEM, id=self.key, display_name=self.name)


SYSTEM_ENTITIES: dict[str, SystemEntity] = {
    e.key: e
    for e in (
        SystemEntity("calendar", "Calendar", "User calendar and events", "Events and deadlines", "include_schedule"),
        SystemEntity("tasks", "Tasks", "User task list", "Task list", "include_task_flow"),
        SystemEntity("taskflow", "Task Flow", "Project task flow board", "Task board", "include_task_flow"),
        SystemEntity("roadmap", "Roadmap", "Project roadmap", "Project roadmap"),
        SystemEntity("mindmesh", "Mind Mesh", "Project knowledge graph", "Knowledge graph", "include_knowledge_graph"),
        SystemEntity("habits", "Habits", "User habit tracking", "Habit tracking"),
        SystemEntity("goals", "Goals", "User goals", "Personal goals"),
    )
}

# Tiers 2-5, in the order they are consulted
_SCOPED_TIERS: tuple[EntityCategory, ...] = (
    EntityCategory.STRUCTURAL_GROUP,
    EntityCategory.WORK_ITEM,
    EntityCategory.PERSON,
    EntityCategory.CROSS_GROUP_SHARED,
)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class EntityResolver:
    """Resolves normalized keys against an injected directory.

    Args:
        directory: Permission-scoped entity lookup.
        permissions: Secondary access check for shared-in groups.
        metrics: Optional collector for per-key outcome and latency.
    """

    def __init__(
        self,
        directory: EntityDirectory,
        permissions: PermissionOracle,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._directory = directory
        self._permissions = permissions
        self._metrics = metrics

    async def resolve(self, normalized_key: str, access: AccessContext) -> ResolutionOutcome:
        """Resolve a single key.

        Raises:
            EntityLookupError: if a tier query or permission check fails.
        """
        if access.allows(EntityCategory.SYSTEM):
            system = SYSTEM_ENTITIES.get(normalized_key)
            if system is not None:
                return ResolutionOutcome.resolved(normalized_key, system.ref)

        for category in _SCOPED_TIERS:
            if not access.allows(category):
                continue
            try:
                candidates = await self._query_tier(category, normalized_key, access)
            except Exception as exc:
                raise EntityLookupError(normalized_key, category.value, str(exc)) from exc

            if not candidates:
                continue

            logger.debug(
                "Key '%s' matched %d candidate(s) at tier %s",
                normalized_key, len(candidates), category.value,
            )
            if len(candidates) == 1:
                return ResolutionOutcome.resolved(normalized_key, candidates[0])
            return ResolutionOutcome.ambiguous(normalized_key, candidates)

        return ResolutionOutcome.unresolved(normalized_key)

    async def resolve_all(
        self, keys: list[str], access: AccessContext
    ) -> list[ResolutionOutcome]:
        """Resolve *keys* concurrently; output order matches input order.

        A collaborator failure for one key yields a ``failed`` outcome for
        that key only.  Duplicate keys are resolved independently.
        """
        return list(
            await asyncio.gather(*(self._resolve_isolated(k, access) for k in keys))
        )

    async def _resolve_isolated(self, key: str, access: AccessContext) -> ResolutionOutcome:
        start = time.perf_counter()
        try:
            outcome = await self.resolve(key, access)
        except Exception as exc:
            logger.exception("Entity resolution failed for key '%s'", key)
            outcome = ResolutionOutcome.failed(key, str(exc))
        if self._metrics is not None:
            self._metrics.record_resolution(
                status=outcome.status.value,
                latency_ms=(time.perf_counter() - start) * 1000,
            )
        return outcome

    # -- tier queries --

    async def _query_tier(
        self, category: EntityCategory, key: str, access: AccessContext
    ) -> list[EntityReference]:
        group_id = access.active_group_id

        if category in (EntityCategory.STRUCTURAL_GROUP, EntityCategory.WORK_ITEM):
            if group_id is None:
                return []
            found = await self._directory.find_by_normalized_name(
                category, key, LookupScope(actor_id=access.actor_id, group_id=group_id)
            )
            return _dedupe(found)

        if category == EntityCategory.PERSON:
            people: list[EntityReference] = []
            if group_id is not None:
                people = await self._directory.find_by_normalized_name(
                    category, key, LookupScope(actor_id=access.actor_id, group_id=group_id)
                )
            if not people:
                people = await self._directory.find_by_normalized_name(
                    category,
                    key,
                    LookupScope(actor_id=access.actor_id, source=LookupSource.PERSONAL_DIRECTORY),
                )
            return _dedupe(people)

        # Cross-group shared resources
        if not access.allow_cross_group or group_id is None:
            return []
        shared = await self._directory.find_by_normalized_name(
            category,
            key,
            LookupScope(actor_id=access.actor_id, group_id=group_id, source=LookupSource.SHARED_IN),
        )
        accessible: list[EntityReference] = []
        for ref in _dedupe(shared):
            if await self._permissions.can_access(access.actor_id, ref):
                accessible.append(ref)
        return accessible


def _dedupe(refs: list[EntityReference]) -> list[EntityReference]:
    """Drop repeated ids and order by id so outcomes are reproducible."""
    by_id: dict[str, EntityReference] = {}
    for ref in refs:
        by_id.setdefault(ref.id, ref)
    return [by_id[i] for i in sorted(by_id)]


# ---------------------------------------------------------------------------
# Outcome helpers
# ---------------------------------------------------------------------------


def get_resolved(outcomes: list[ResolutionOutcome]) -> list[ResolutionOutcome]:
    return [o for o in outcomes if o.status == ResolutionStatus.RESOLVED]


def get_ambiguous(outcomes: list[ResolutionOutcome]) -> list[ResolutionOutcome]:
    return [o for o in outcomes if o.status == ResolutionStatus.AMBIGUOUS]


def get_unresolved(outcomes: list[ResolutionOutcome]) -> list[ResolutionOutcome]:
    return [o for o in outcomes if o.status == ResolutionStatus.UNRESOLVED]


def get_failed(outcomes: list[ResolutionOutcome]) -> list[ResolutionOutcome]:
    return [o for o in outcomes if o.status == ResolutionStatus.FAILED]


def group_resolved_by_category(
    outcomes: list[ResolutionOutcome],
) -> dict[EntityCategory, list[EntityReference]]:
    """Resolved entities grouped by category, in tier order."""
    grouped: dict[EntityCategory, list[EntityReference]] = {}
    for outcome in get_resolved(outcomes):
        if outcome.entity is not None:
            grouped.setdefault(outcome.entity.category, []).append(outcome.entity)
    return {c: grouped[c] for c in sorted(grouped, key=lambda c: c.tier)}
