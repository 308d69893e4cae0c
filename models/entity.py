"""Entity reference models — markers, access context, and resolution outcomes.

Defines the value objects passed between the marker scanner, the entity
resolver and the snapshot budgeter.  Everything here is created fresh per
request and never persisted.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import Field, field_validator, model_validator

from models.base import FrozenCamelModel

_KEY_RE = re.compile(r"^[a-z0-9]+$")


class EntityCategory(str, Enum):
    """Entity tiers, declared highest priority first.

    Declaration order is the resolution tie-breaker: when the same key
    matches at more than one tier, the earliest tier wins.
    """

    SYSTEM = "system"
    STRUCTURAL_GROUP = "structural_group"
    WORK_ITEM = "work_item"
    PERSON = "person"
    CROSS_GROUP_SHARED = "cross_group_shared"

    @property
    def tier(self) -> int:
        """Zero-based tier rank (0 = highest priority)."""
        return TIER_ORDER.index(self)


TIER_ORDER: tuple[EntityCategory, ...] = tuple(EntityCategory)

ALL_CATEGORIES: frozenset[EntityCategory] = frozenset(EntityCategory)


class EntityReference(FrozenCamelModel):
    """Opaque handle to an entity: category, id and display name only."""

    category: EntityCategory
    id: str
    display_name: str

    def sort_key(self) -> tuple[int, str]:
        return (self.category.tier, self.id)


class MarkerOccurrence(FrozenCamelModel):
    """A single ``@``-prefixed span found in raw text."""

    raw_text: str
    start_offset: int = Field(ge=0)
    normalized_key: str

    @field_validator("normalized_key")
    @classmethod
    def _key_is_normalized(cls, value: str) -> str:
        if not _KEY_RE.match(value):
            raise ValueError(f"normalized key must match [a-z0-9]+, got {value!r}")
        return value


class ScanResult(FrozenCamelModel):
    """Output of the marker scanner."""

    occurrences: tuple[MarkerOccurrence, ...] = ()
    truncated: bool = False
    markers_dropped: int = Field(default=0, ge=0)

    @property
    def keys(self) -> list[str]:
        return [occ.normalized_key for occ in self.occurrences]


class AccessContext(FrozenCamelModel):
    """Request-scoped permission scope threaded through every lookup.

    ``active_group_id`` is optional: without it, group-scoped tiers are
    skipped and people are looked up in the actor's personal directory.
    """

    actor_id: str
    active_group_id: str | None = None
    allowed_categories: frozenset[EntityCategory] = ALL_CATEGORIES
    allow_cross_group: bool = True

    def allows(self, category: EntityCategory) -> bool:
        return category in self.allowed_categories


class LookupSource(str, Enum):
    """Which store a lookup is scoped to."""

    GROUP = "group"
    PERSONAL_DIRECTORY = "personal_directory"
    SHARED_IN = "shared_in"


class LookupScope(FrozenCamelModel):
    """Scope hint handed to the entity directory with every query."""

    actor_id: str
    group_id: str | None = None
    source: LookupSource = LookupSource.GROUP


class ResolutionStatus(str, Enum):
    """Outcome of resolving a single marker key."""

    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    UNRESOLVED = "unresolved"
    FAILED = "failed"  # collaborator failure, scoped to this key


class ResolutionOutcome(FrozenCamelModel):
    """Per-key resolution outcome.

    - ``resolved``: exactly one ``entity``
    - ``ambiguous``: two or more ``candidates``, all from the same tier
    - ``unresolved``: neither
    - ``failed``: ``error`` describes the collaborator failure
    """

    normalized_key: str
    status: ResolutionStatus
    entity: EntityReference | None = None
    candidates: tuple[EntityReference, ...] = ()
    error: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> ResolutionOutcome:
        if self.status == ResolutionStatus.RESOLVED:
            if self.entity is None or self.candidates:
                raise ValueError("resolved outcome carries exactly one entity")
        elif self.status == ResolutionStatus.AMBIGUOUS:
            if self.entity is not None or len(self.candidates) < 2:
                raise ValueError("ambiguous outcome carries two or more candidates")
            if len({c.category for c in self.candidates}) != 1:
                raise ValueError("ambiguous candidates must share one tier")
        elif self.entity is not None or self.candidates:
            raise ValueError(f"{self.status.value} outcome carries no entities")
        return self

    @classmethod
    def resolved(cls, key: str, entity: EntityReference) -> ResolutionOutcome:
        return cls(normalized_key=key, status=ResolutionStatus.RESOLVED, entity=entity)

    @classmethod
    def ambiguous(
        cls, key: str, candidates: list[EntityReference]
    ) -> ResolutionOutcome:
        return cls(
            normalized_key=key,
            status=ResolutionStatus.AMBIGUOUS,
            candidates=tuple(candidates),
        )

    @classmethod
    def unresolved(cls, key: str) -> ResolutionOutcome:
        return cls(normalized_key=key, status=ResolutionStatus.UNRESOLVED)

    @classmethod
    def failed(cls, key: str, error: str) -> ResolutionOutcome:
        return cls(normalized_key=key, status=ResolutionStatus.FAILED, error=error)
