"""Tests for the engine's pydantic models — validation and serialization."""

import pytest
from pydantic import ValidationError

from models.entity import (
    AccessContext,
    EntityCategory,
    EntityReference,
    ResolutionOutcome,
    ResolutionStatus,
    TIER_ORDER,
)
from models.enrichment import AmbiguousKey
from models.scope import ENGINE_OWNED_FIELDS, WorkingScope
from models.snapshot import BudgetPolicy, GroupSnapshot, SnapshotBuildResult
from tests.conftest import G, P, W, ref


# ── EntityCategory ────────────────────────────────────────────


def test_tier_order():
    assert [c.value for c in TIER_ORDER] == [
        "system",
        "structural_group",
        "work_item",
        "person",
        "cross_group_shared",
    ]
    assert EntityCategory.SYSTEM.tier == 0
    assert EntityCategory.CROSS_GROUP_SHARED.tier == 4


def test_reference_is_hashable_and_sortable():
    a = ref(W, "wi-2", "B")
    b = ref(G, "sg-9", "A")
    assert sorted([a, b], key=EntityReference.sort_key) == [b, a]
    assert len({a, ref(W, "wi-2", "B")}) == 1


def test_reference_serializes_camel_case():
    dumped = ref(G, "sg-1", "Launch").model_dump(by_alias=True)
    assert dumped == {"category": "structural_group", "id": "sg-1", "displayName": "Launch"}


# ── ResolutionOutcome ─────────────────────────────────────────


def test_resolved_requires_entity():
    with pytest.raises(ValidationError):
        ResolutionOutcome(normalized_key="x", status=ResolutionStatus.RESOLVED)


def test_ambiguous_requires_two_candidates():
    with pytest.raises(ValidationError):
        ResolutionOutcome.ambiguous("x", [ref(G, "sg-1", "X")])


def test_ambiguous_candidates_share_one_tier():
    with pytest.raises(ValidationError):
        ResolutionOutcome.ambiguous("design", [ref(G, "sg-1", "Design"), ref(W, "wi-1", "Design")])


def test_unresolved_carries_nothing():
    with pytest.raises(ValidationError):
        ResolutionOutcome(
            normalized_key="x",
            status=ResolutionStatus.UNRESOLVED,
            entity=ref(P, "p-1", "X"),
        )


def test_failed_outcome_keeps_error():
    outcome = ResolutionOutcome.failed("x", "timeout")
    assert outcome.status == ResolutionStatus.FAILED
    assert outcome.error == "timeout"
    assert outcome.entity is None


def test_outcome_is_frozen():
    outcome = ResolutionOutcome.unresolved("x")
    with pytest.raises(ValidationError):
        outcome.normalized_key = "y"


# ── AccessContext / BudgetPolicy ──────────────────────────────


def test_access_context_defaults_allow_everything():
    ctx = AccessContext(actor_id="u-1")
    assert all(ctx.allows(c) for c in EntityCategory)
    assert ctx.allow_cross_group is True
    assert ctx.active_group_id is None


def test_budget_policy_rejects_negative_ceilings():
    with pytest.raises(ValidationError):
        BudgetPolicy(max_aggregate_text_length=-1)


# ── Snapshots ─────────────────────────────────────────────────


def test_snapshot_union_discriminates_on_kind():
    result = SnapshotBuildResult.model_validate({
        "snapshots": [{
            "kind": "group",
            "ref": {"category": "structural_group", "id": "sg-1", "displayName": "Launch"},
            "entityId": "sg-1",
            "name": "Launch",
        }],
    })
    assert isinstance(result.snapshots[0], GroupSnapshot)


# ── WorkingScope ──────────────────────────────────────────────


def test_working_scope_keeps_extra_fields():
    scope = WorkingScope(group_id="g-1", trace_id="t-1")
    assert scope.trace_id == "t-1"
    assert scope.model_dump()["trace_id"] == "t-1"


def test_engine_owned_fields_are_declared():
    assert ENGINE_OWNED_FIELDS <= set(WorkingScope.model_fields)
    assert "group_id" not in ENGINE_OWNED_FIELDS


# ── AmbiguousKey ──────────────────────────────────────────────


def test_ambiguous_key_describes_candidates():
    key = AmbiguousKey(
        normalized_key="launch",
        candidates=(ref(G, "sg-1", "Launch"), ref(G, "sg-2", "LAUNCH!")),
    )
    assert key.describe_candidates() == ["structural_group: Launch", "structural_group: LAUNCH!"]
