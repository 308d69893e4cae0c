"""Snapshot budgeter — size-bounded entity snapshots and scope merging.

For every resolved entity the budgeter fetches a whitelisted attribute set,
projects it into the category's snapshot shape, truncates its free-text
fields (names, titles, descriptions, roles) to the per-entity ceiling, and
then admits snapshots in tier order until the aggregate ceiling would be
exceeded.  Entities that do not fit are dropped whole and reported;
snapshots are never truncated further to squeeze in.

:func:`merge_into_scope` then writes the engine-owned fields of the caller's
:class:`WorkingScope` (id collections and inclusion flags) and leaves every
other field alone.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from config.settings import get_settings
from errors.exceptions import AttributeFetchError
from models.entity import EntityCategory, EntityReference
from models.scope import WorkingScope
from models.snapshot import (
    BudgetPolicy,
    GroupSnapshot,
    PersonSnapshot,
    Snapshot,
    SnapshotBuildResult,
    SnapshotFailure,
    SystemSnapshot,
    WorkItemSnapshot,
)
from services.entity_resolver import SYSTEM_ENTITIES
from services.entity_store import AttributeFetcher
from services.metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Free-text fields subject to the per-entity ceiling, by snapshot kind.
# Ids, statuses and dates are never cut.
_TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    "system": ("name", "description"),
    "group": ("name", "description"),
    "work_item": ("title", "description"),
    "person": ("name", "role"),
}


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------


def truncate_text(text: str | None, max_length: int, suffix: str | None = None) -> str:
    """Cut *text* to at most *max_length* characters, ending in *suffix*.

    Idempotent: a truncated value is exactly *max_length* long, so a second
    pass returns it unchanged.
    """
    if not text:
        return ""
    if suffix is None:
        suffix = get_settings().tag_truncation_suffix
    if len(text) <= max_length:
        return text
    if max_length <= len(suffix):
        return text[:max_length]
    return text[: max_length - len(suffix)] + suffix


def _truncate_fields(snapshot: Snapshot, max_length: int) -> Snapshot:
    updates = {
        name: truncate_text(getattr(snapshot, name), max_length)
        for name in _TEXT_FIELDS[snapshot.kind]
    }
    return snapshot.model_copy(update=updates)


def snapshot_size(snapshot: Snapshot) -> int:
    """Serialized payload size of *snapshot* (compact JSON, camelCase)."""
    return len(snapshot.model_dump_json(by_alias=True, exclude={"ref"}))


# ---------------------------------------------------------------------------
# Per-category builders
# ---------------------------------------------------------------------------


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _build_system(ref: EntityReference, bag: dict[str, Any]) -> SystemSnapshot:
    return SystemSnapshot(
        ref=ref,
        entity_id=ref.id,
        name=str(bag.get("name") or ref.display_name),
        description=str(bag.get("description") or ""),
    )


def _build_group(ref: EntityReference, bag: dict[str, Any]) -> GroupSnapshot:
    return GroupSnapshot(
        ref=ref,
        entity_id=ref.id,
        name=str(bag.get("name") or ref.display_name),
        description=str(bag.get("description") or ""),
        color=_opt_str(bag.get("color")),
        item_count=int(bag.get("item_count") or 0),
        is_shared=bool(bag.get("is_shared")) or ref.category == EntityCategory.CROSS_GROUP_SHARED,
        parent_group_id=_opt_str(bag.get("parent_group_id")),
        source_group_id=_opt_str(bag.get("source_group_id")),
    )


def _build_work_item(ref: EntityReference, bag: dict[str, Any]) -> WorkItemSnapshot:
    duration = bag.get("estimated_duration")
    return WorkItemSnapshot(
        ref=ref,
        entity_id=ref.id,
        title=str(bag.get("title") or ref.display_name),
        description=str(bag.get("description") or ""),
        item_type=_opt_str(bag.get("item_type")),
        status=_opt_str(bag.get("status")),
        deadline=_opt_str(bag.get("deadline")),
        group_id=_opt_str(bag.get("group_id")),
        estimated_duration=None if duration is None else int(duration),
    )


def _build_person(ref: EntityReference, bag: dict[str, Any]) -> PersonSnapshot:
    return PersonSnapshot(
        ref=ref,
        entity_id=ref.id,
        name=str(bag.get("name") or ref.display_name),
        role=str(bag.get("role") or ""),
        assignment_count=int(bag.get("assignment_count") or 0),
        is_group_member=bool(bag.get("is_group_member")),
        is_directory_contact=bool(bag.get("is_directory_contact")),
    )


_BUILDERS: dict[EntityCategory, Callable[[EntityReference, dict[str, Any]], Snapshot]] = {
    EntityCategory.SYSTEM: _build_system,
    EntityCategory.STRUCTURAL_GROUP: _build_group,
    EntityCategory.WORK_ITEM: _build_work_item,
    EntityCategory.PERSON: _build_person,
    EntityCategory.CROSS_GROUP_SHARED: _build_group,
}


# ---------------------------------------------------------------------------
# Budgeter
# ---------------------------------------------------------------------------


class SnapshotBudgeter:
    """Builds budget-bounded snapshots for resolved entities."""

    def __init__(
        self,
        fetcher: AttributeFetcher,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._metrics = metrics

    async def build_snapshots(
        self,
        entities: list[EntityReference],
        purpose: str,
        policy: BudgetPolicy,
    ) -> SnapshotBuildResult:
        """Build snapshots for *entities* under *policy*.

        Steps: drop categories the purpose excludes, keep at most
        ``max_markers_per_request`` entities (highest tier first), fetch and
        project attributes, truncate text fields, then admit snapshots in
        tier order until ``max_aggregate_text_length`` would be exceeded.
        The entity that overflows and everything ranked after it is dropped.
        """
        result = SnapshotBuildResult()

        eligible: list[EntityReference] = []
        seen: set[EntityReference] = set()
        for ref in entities:
            if ref in seen:
                continue
            seen.add(ref)
            if ref.category not in policy.included_categories:
                result.excluded_by_policy.append(ref)
            else:
                eligible.append(ref)

        ranked = sorted(enumerate(eligible), key=lambda pair: (pair[1].category.tier, pair[0]))
        kept = ranked[: policy.max_markers_per_request]
        over_cap = [ref for _, ref in ranked[policy.max_markers_per_request:]]

        built = await asyncio.gather(
            *(self._build_one(ref, policy.max_text_length_per_entity) for _, ref in kept)
        )

        admitted: list[tuple[int, Snapshot]] = []
        overflow: list[EntityReference] = []
        total = 0
        for (index, ref), item in zip(kept, built):
            if isinstance(item, SnapshotFailure):
                result.failures.append(item)
                continue
            if overflow:
                overflow.append(ref)
                continue
            size = snapshot_size(item)
            if total + size > policy.max_aggregate_text_length:
                overflow.append(ref)
                continue
            total += size
            admitted.append((index, item))

        result.snapshots = [snap for _, snap in sorted(admitted, key=lambda pair: pair[0])]
        result.dropped_for_budget = overflow + over_cap
        result.total_size = total

        if result.dropped_for_budget:
            logger.info(
                "Budget for purpose '%s' dropped %d entit(ies): %s",
                purpose,
                len(result.dropped_for_budget),
                ", ".join(r.id for r in result.dropped_for_budget),
            )
        if self._metrics is not None:
            self._metrics.record_budget(
                purpose=purpose,
                kept=len(result.snapshots),
                dropped=len(result.dropped_for_budget),
                excluded=len(result.excluded_by_policy),
                total_size=total,
            )
        return result

    async def _build_one(
        self, ref: EntityReference, max_length: int
    ) -> Snapshot | SnapshotFailure:
        builder = _BUILDERS[ref.category]
        if ref.category == EntityCategory.SYSTEM:
            system = SYSTEM_ENTITIES.get(ref.id)
            bag: dict[str, Any] | None = (
                {"name": system.name, "description": system.description} if system else {}
            )
        else:
            try:
                bag = await self._fetcher.fetch_attributes(ref)
            except Exception as exc:
                logger.exception("Attribute fetch failed for %s '%s'", ref.category.value, ref.id)
                error = AttributeFetchError(ref.id, ref.category.value, str(exc))
                return SnapshotFailure(entity=ref, error=str(error))

        if bag is None:
            return SnapshotFailure(entity=ref, error=f"{ref.category.value} '{ref.id}' not found")
        try:
            snapshot = builder(ref, bag)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning(
                "Malformed attributes for %s '%s': %s", ref.category.value, ref.id, exc
            )
            return SnapshotFailure(
                entity=ref,
                error=f"{ref.category.value} '{ref.id}' has malformed attributes: {exc}",
            )
        return _truncate_fields(snapshot, max_length)


# ---------------------------------------------------------------------------
# Scope merge
# ---------------------------------------------------------------------------


def merge_into_scope(scope: WorkingScope, snapshots: list[Snapshot]) -> WorkingScope:
    """Return a copy of *scope* with the snapshots' ids and flags merged in.

    Only engine-owned fields are written: ids are appended without
    duplicates, flags are only ever raised.  The input scope is not
    modified.
    """
    group_ids = list(scope.group_ids)
    item_ids = list(scope.item_ids)
    flags: dict[str, bool] = {}

    for snap in snapshots:
        if isinstance(snap, GroupSnapshot):
            if snap.entity_id not in group_ids:
                group_ids.append(snap.entity_id)
            flags["include_detailed_groups"] = True
        elif isinstance(snap, WorkItemSnapshot):
            if snap.entity_id not in item_ids:
                item_ids.append(snap.entity_id)
        elif isinstance(snap, PersonSnapshot):
            flags["include_people"] = True
        elif isinstance(snap, SystemSnapshot):
            system = SYSTEM_ENTITIES.get(snap.entity_id)
            if system is not None and system.scope_flag:
                flags[system.scope_flag] = True

    updates: dict[str, Any] = {k: v for k, v in flags.items() if not getattr(scope, k)}
    if group_ids != scope.group_ids:
        updates["group_ids"] = group_ids
    if item_ids != scope.item_ids:
        updates["item_ids"] = item_ids
    return scope.model_copy(update=updates, deep=True)
