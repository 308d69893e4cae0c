"""Request-purpose → budget policy table.

Each purpose bounds how many markers are processed, how long any single
text field may be, how large the combined snapshot payload may grow, and
which entity categories the purpose may pull in at all.
"""

from __future__ import annotations

from collections.abc import Mapping

from config.settings import Settings, get_settings
from errors.exceptions import BudgetPolicyNotFoundError
from models.entity import ALL_CATEGORIES, EntityCategory
from models.snapshot import BudgetPolicy

# Relative to the settings defaults: (text-per-entity factor, aggregate factor)
_PURPOSE_SCALES: dict[str, tuple[float, float]] = {
    "chat": (0.5, 0.5),
    "draft": (1.0, 1.0),
    "summary": (0.25, 0.5),
    "planning": (1.0, 1.5),
    "analysis": (1.0, 2.0),
}

# Drafting only needs the work-structure categories
_PURPOSE_CATEGORIES: dict[str, frozenset[EntityCategory]] = {
    "draft": frozenset({
        EntityCategory.SYSTEM,
        EntityCategory.STRUCTURAL_GROUP,
        EntityCategory.WORK_ITEM,
        EntityCategory.CROSS_GROUP_SHARED,
    }),
}


def build_policy_table(settings: Settings | None = None) -> dict[str, BudgetPolicy]:
    """Build the default purpose table from *settings*."""
    s = settings or get_settings()
    table: dict[str, BudgetPolicy] = {}
    for purpose, (text_scale, aggregate_scale) in _PURPOSE_SCALES.items():
        table[purpose] = BudgetPolicy(
            max_markers_per_request=s.tag_max_markers,
            max_text_length_per_entity=int(s.tag_text_length_per_entity * text_scale),
            max_aggregate_text_length=int(s.tag_aggregate_text_length * aggregate_scale),
            included_categories=_PURPOSE_CATEGORIES.get(purpose, ALL_CATEGORIES),
        )
    return table


def get_budget_policy(
    purpose: str,
    table: Mapping[str, BudgetPolicy] | None = None,
) -> BudgetPolicy:
    """Look up the policy for *purpose*.

    Raises:
        BudgetPolicyNotFoundError: when the purpose has no policy.
    """
    policies = table if table is not None else build_policy_table()
    try:
        return policies[purpose]
    except KeyError:
        raise BudgetPolicyNotFoundError(purpose, list(policies)) from None
