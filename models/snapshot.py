"""Snapshot and budget models.

A snapshot is the minimal, size-bounded projection of one resolved entity.
There is one shape per category family, tagged by ``kind`` so the union can
be validated and serialized without dynamic field access.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field

from models.base import CamelModel, FrozenCamelModel
from models.entity import ALL_CATEGORIES, EntityCategory, EntityReference


class BudgetPolicy(FrozenCamelModel):
    """Per-purpose ceilings; read-only input to the budgeter."""

    max_markers_per_request: int = Field(default=5, ge=0)
    max_text_length_per_entity: int = Field(default=1000, ge=0)
    max_aggregate_text_length: int = Field(default=4000, ge=0)
    included_categories: frozenset[EntityCategory] = ALL_CATEGORIES


class _SnapshotBase(FrozenCamelModel):
    ref: EntityReference
    entity_id: str


class SystemSnapshot(_SnapshotBase):
    kind: Literal["system"] = "system"
    name: str
    description: str = ""


class GroupSnapshot(_SnapshotBase):
    """Structural group (or a group shared in from another workspace)."""

    kind: Literal["group"] = "group"
    name: str
    description: str = ""
    color: str | None = None
    item_count: int = 0
    is_shared: bool = False
    parent_group_id: str | None = None
    source_group_id: str | None = None


class WorkItemSnapshot(_SnapshotBase):
    kind: Literal["work_item"] = "work_item"
    title: str
    description: str = ""
    item_type: str | None = None
    status: str | None = None
    deadline: str | None = None
    group_id: str | None = None
    estimated_duration: int | None = None


class PersonSnapshot(_SnapshotBase):
    kind: Literal["person"] = "person"
    name: str
    role: str = ""
    assignment_count: int = 0
    is_group_member: bool = False
    is_directory_contact: bool = False


Snapshot = Annotated[
    Union[SystemSnapshot, GroupSnapshot, WorkItemSnapshot, PersonSnapshot],
    Field(discriminator="kind"),
]


class SnapshotFailure(FrozenCamelModel):
    """An entity whose attributes could not be fetched."""

    entity: EntityReference
    error: str


class SnapshotBuildResult(CamelModel):
    """Output of ``SnapshotBudgeter.build_snapshots``."""

    snapshots: list[Snapshot] = Field(default_factory=list)
    dropped_for_budget: list[EntityReference] = Field(default_factory=list)
    excluded_by_policy: list[EntityReference] = Field(default_factory=list)
    failures: list[SnapshotFailure] = Field(default_factory=list)
    total_size: int = 0
