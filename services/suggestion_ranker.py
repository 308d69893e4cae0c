"""Suggestion ranker — autocomplete candidates for a partially typed marker.

Safe to call on every keystroke: it only reads from the injected
collaborators.  The candidate pool is built with the same source-scoped
lookups as the resolver, so anything the actor cannot see is never scored.
"""

from __future__ import annotations

import logging

from config.settings import get_settings
from models.entity import (
    AccessContext,
    EntityCategory,
    EntityReference,
    LookupScope,
    LookupSource,
)
from models.enrichment import SuggestionEntry
from services.entity_resolver import SYSTEM_ENTITIES
from services.entity_store import EntityDirectory, PermissionOracle, RecencyLog
from services.marker_scanner import normalize_name

logger = logging.getLogger(__name__)

# Additive scoring rules
SCORE_KEY_EXACT = 100
SCORE_KEY_PREFIX = 50
SCORE_KEY_CONTAINS = 25
SCORE_NAME_EXACT = 90
SCORE_NAME_PREFIX = 40
SCORE_NAME_CONTAINS = 20
SCORE_SYSTEM_BONUS = 10

_SUBTITLES: dict[EntityCategory, str] = {
    EntityCategory.STRUCTURAL_GROUP: "Track",
    EntityCategory.WORK_ITEM: "Item",
    EntityCategory.PERSON: "Person",
    EntityCategory.CROSS_GROUP_SHARED: "Shared Track",
}


def score_candidate(
    normalized_key: str, display_name: str, category: EntityCategory, query_key: str, query_text: str
) -> int:
    """Relevance of one candidate for the typed query (0 = no match)."""
    score = 0
    if normalized_key == query_key:
        score += SCORE_KEY_EXACT
    elif normalized_key.startswith(query_key):
        score += SCORE_KEY_PREFIX
    elif query_key in normalized_key:
        score += SCORE_KEY_CONTAINS

    name = display_name.lower()
    if query_text:
        if name == query_text:
            score += SCORE_NAME_EXACT
        elif name.startswith(query_text):
            score += SCORE_NAME_PREFIX
        elif query_text in name:
            score += SCORE_NAME_CONTAINS

    if score and category == EntityCategory.SYSTEM:
        score += SCORE_SYSTEM_BONUS
    return score


def _entry(ref: EntityReference, score: int = 0) -> SuggestionEntry:
    if ref.category == EntityCategory.SYSTEM and ref.id in SYSTEM_ENTITIES:
        subtitle = SYSTEM_ENTITIES[ref.id].subtitle
    else:
        subtitle = _SUBTITLES.get(ref.category, "")
    return SuggestionEntry(
        normalized_key=normalize_name(ref.display_name),
        display_name=ref.display_name,
        category=ref.category,
        entity_id=ref.id,
        subtitle=subtitle,
        score=score,
    )


class SuggestionRanker:
    """Ranks visible entities against a partial marker key.

    Args:
        directory: Permission-scoped entity lookup (shared with the resolver).
        permissions: Access check for shared-in groups.
        recency: Optional log of recently referenced entities, used for the
            default set shown before anything is typed.
    """

    def __init__(
        self,
        directory: EntityDirectory,
        permissions: PermissionOracle,
        recency: RecencyLog | None = None,
    ) -> None:
        self._directory = directory
        self._permissions = permissions
        self._recency = recency

    async def suggest(
        self,
        partial_key: str,
        access: AccessContext,
        limit: int | None = None,
    ) -> list[SuggestionEntry]:
        """Top *limit* suggestions for *partial_key*, best first.

        Ordering: score descending, then tier, then entity id.  An empty
        key returns the default set (system entities, then recent
        references that are still visible).
        """
        if limit is None:
            limit = get_settings().tag_suggestion_limit
        if limit <= 0:
            return []

        query_key = normalize_name(partial_key)
        pool = await self._visible_pool(access)

        if not query_key:
            return await self._default_set(pool, access, limit)

        query_text = partial_key.strip().lstrip("@").lower()
        scored: list[tuple[int, EntityReference]] = []
        for ref in pool:
            key = normalize_name(ref.display_name)
            if not key:
                continue
            score = score_candidate(key, ref.display_name, ref.category, query_key, query_text)
            if score > 0:
                scored.append((score, ref))

        scored.sort(key=lambda pair: (-pair[0], pair[1].category.tier, pair[1].id))
        return [_entry(ref, score) for score, ref in scored[:limit]]

    async def _default_set(
        self, pool: list[EntityReference], access: AccessContext, limit: int
    ) -> list[SuggestionEntry]:
        entries = [_entry(ref) for ref in pool if ref.category == EntityCategory.SYSTEM]

        if self._recency is not None:
            visible = set(pool)
            recent_limit = get_settings().tag_recent_suggestion_limit
            recent = await self._recency.recent_references(
                access.actor_id, access.active_group_id, recent_limit
            )
            listed = {(e.category, e.entity_id) for e in entries}
            for ref in recent:
                if ref in visible and (ref.category, ref.id) not in listed:
                    listed.add((ref.category, ref.id))
                    entries.append(_entry(ref))

        return entries[:limit]

    async def _visible_pool(self, access: AccessContext) -> list[EntityReference]:
        """Every entity the actor may reference, in tier order, without duplicates."""
        pool: list[EntityReference] = []

        if access.allows(EntityCategory.SYSTEM):
            pool.extend(s.ref for s in SYSTEM_ENTITIES.values())

        group_id = access.active_group_id
        actor_id = access.actor_id
        group_scope = LookupScope(actor_id=actor_id, group_id=group_id)

        if group_id is not None:
            for category in (EntityCategory.STRUCTURAL_GROUP, EntityCategory.WORK_ITEM):
                if access.allows(category):
                    pool.extend(await self._directory.list_visible(category, group_scope))

        if access.allows(EntityCategory.PERSON):
            if group_id is not None:
                pool.extend(await self._directory.list_visible(EntityCategory.PERSON, group_scope))
            pool.extend(
                await self._directory.list_visible(
                    EntityCategory.PERSON,
                    LookupScope(actor_id=actor_id, source=LookupSource.PERSONAL_DIRECTORY),
                )
            )

        if (
            access.allows(EntityCategory.CROSS_GROUP_SHARED)
            and access.allow_cross_group
            and group_id is not None
        ):
            shared = await self._directory.list_visible(
                EntityCategory.CROSS_GROUP_SHARED,
                LookupScope(actor_id=actor_id, group_id=group_id, source=LookupSource.SHARED_IN),
            )
            for ref in shared:
                if await self._permissions.can_access(actor_id, ref):
                    pool.append(ref)

        deduped: dict[tuple[EntityCategory, str], EntityReference] = {}
        for ref in pool:
            deduped.setdefault((ref.category, ref.id), ref)
        return list(deduped.values())
