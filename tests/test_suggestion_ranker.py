"""Tests for the suggestion ranker — scoring, ordering, default set, visibility."""

import pytest

from models.entity import AccessContext, EntityCategory
from services.suggestion_ranker import (
    SCORE_KEY_EXACT,
    SCORE_NAME_EXACT,
    SCORE_SYSTEM_BONUS,
    SuggestionRanker,
    score_candidate,
)
from tests.conftest import ACTIVE_GROUP, ALICE, G, P, ref


@pytest.fixture
def ranker(store, permissions, recency_log):
    return SuggestionRanker(store, permissions, recency=recency_log)


def _ids(entries):
    return [e.entity_id for e in entries]


# ── scoring ───────────────────────────────────────────────────


def test_score_exact_system_match():
    score = score_candidate("calendar", "Calendar", EntityCategory.SYSTEM, "calendar", "calendar")
    assert score == SCORE_KEY_EXACT + SCORE_NAME_EXACT + SCORE_SYSTEM_BONUS


def test_score_no_match_is_zero_even_for_system():
    assert score_candidate("goals", "Goals", EntityCategory.SYSTEM, "xyz", "xyz") == 0


def test_score_prefix_beats_contains():
    prefix = score_candidate("marketingplan", "Marketing Plan", EntityCategory.STRUCTURAL_GROUP, "mark", "mark")
    contains = score_candidate("marketingplan", "Marketing Plan", EntityCategory.STRUCTURAL_GROUP, "plan", "plan")
    assert prefix > contains > 0


# ── suggest ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_prefix_suggestion(ranker, access):
    entries = await ranker.suggest("mark", access)
    assert _ids(entries) == ["sg-mkt"]
    entry = entries[0]
    assert entry.normalized_key == "marketingplan"
    assert entry.display_name == "Marketing Plan"
    assert entry.category == EntityCategory.STRUCTURAL_GROUP
    assert entry.subtitle == "Track"


@pytest.mark.asyncio
async def test_marker_prefix_is_ignored(ranker, access):
    assert _ids(await ranker.suggest("@mark", access)) == ["sg-mkt"]


@pytest.mark.asyncio
async def test_system_bonus_orders_calendar_first(ranker, access):
    entries = await ranker.suggest("calendar", access)
    assert _ids(entries) == ["calendar", "sg-cal"]
    assert entries[0].score > entries[1].score
    assert entries[0].subtitle == "Events and deadlines"


@pytest.mark.asyncio
async def test_display_name_exactness_breaks_same_key(ranker, access):
    """"Launch" beats "LAUNCH!" on display-name exactness."""
    entries = await ranker.suggest("launch", access)
    assert _ids(entries) == ["sg-launch-1", "sg-launch-2"]


@pytest.mark.asyncio
async def test_equal_scores_ordered_by_tier(ranker, access):
    entries = await ranker.suggest("design", access)
    assert [(e.category, e.entity_id) for e in entries] == [
        (EntityCategory.STRUCTURAL_GROUP, "sg-design"),
        (EntityCategory.WORK_ITEM, "wi-design"),
    ]
    assert entries[0].score == entries[1].score


@pytest.mark.asyncio
async def test_shared_in_group_suggested(ranker, access):
    entries = await ranker.suggest("road", access)
    assert _ids(entries) == ["roadmap", "sg-partner-rm"]
    assert entries[1].category == EntityCategory.CROSS_GROUP_SHARED


@pytest.mark.asyncio
async def test_limit_is_honored(ranker, access):
    entries = await ranker.suggest("a", access, limit=3)
    assert len(entries) == 3
    scores = [e.score for e in entries]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_zero_limit(ranker, access):
    assert await ranker.suggest("mark", access, limit=0) == []


# ── permission opacity ────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("partial", ["hidden", "hiddenplans", "Hidden Plans", "classified", "secret"])
async def test_invisible_entities_never_suggested(ranker, access, partial):
    entries = await ranker.suggest(partial, access)
    assert not {"sg-hidden", "sg-classified", "c-secret"} & set(_ids(entries))


@pytest.mark.asyncio
async def test_inaccessible_duplicate_shared_group_hidden(ranker, access):
    entries = await ranker.suggest("offsite", access)
    assert _ids(entries) == ["sg-offsite-ok"]


@pytest.mark.asyncio
async def test_category_allow_list_respected(ranker):
    ctx = AccessContext(
        actor_id=ALICE,
        active_group_id=ACTIVE_GROUP,
        allowed_categories=frozenset({EntityCategory.PERSON}),
    )
    entries = await ranker.suggest("o", ctx)
    assert {e.category for e in entries} == {EntityCategory.PERSON}


@pytest.mark.asyncio
async def test_without_active_group(ranker):
    ctx = AccessContext(actor_id=ALICE)
    assert _ids(await ranker.suggest("jane", ctx)) == ["c-jane"]
    assert await ranker.suggest("john", ctx) == []


# ── default set ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_empty_key_returns_system_then_recent(ranker, access, recency_log):
    recency_log.record(ALICE, ACTIVE_GROUP, ref(G, "sg-mkt", "Marketing Plan"))
    recency_log.record(
        ALICE, ACTIVE_GROUP, ref(EntityCategory.CROSS_GROUP_SHARED, "sg-hidden", "Hidden Plans")
    )
    recency_log.record(ALICE, ACTIVE_GROUP, ref(P, "p-john", "John Doe"))
    recency_log.record("u-bob", ACTIVE_GROUP, ref(G, "sg-design", "Design"))

    entries = await ranker.suggest("", access)
    ids = _ids(entries)
    assert ids[:7] == ["calendar", "tasks", "taskflow", "roadmap", "mindmesh", "habits", "goals"]
    assert ids[7:] == ["p-john", "sg-mkt"]


@pytest.mark.asyncio
async def test_empty_key_respects_limit(ranker, access):
    entries = await ranker.suggest("@", access, limit=2)
    assert _ids(entries) == ["calendar", "tasks"]


@pytest.mark.asyncio
async def test_suggest_is_deterministic(ranker, access):
    first = await ranker.suggest("e", access)
    second = await ranker.suggest("e", access)
    assert [e.model_dump_json() for e in first] == [e.model_dump_json() for e in second]
