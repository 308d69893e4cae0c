"""Working scope — the request-assembly structure the engine enriches.

The scope belongs to the caller.  The engine writes only the fields listed
in ``ENGINE_OWNED_FIELDS``; everything else (declared or extra) passes
through untouched.
"""

from __future__ import annotations

from pydantic import ConfigDict, Field

from models.base import CamelModel

ENGINE_OWNED_FIELDS: frozenset[str] = frozenset({
    "group_ids",
    "item_ids",
    "include_detailed_groups",
    "include_people",
    "include_schedule",
    "include_task_flow",
    "include_knowledge_graph",
})


class WorkingScope(CamelModel):
    """Mutable request scope handed to the downstream payload assembly."""

    model_config = ConfigDict(extra="allow")

    # Caller-owned
    group_id: str | None = None
    purpose: str | None = None

    # Engine-owned
    group_ids: list[str] = Field(default_factory=list)
    item_ids: list[str] = Field(default_factory=list)
    include_detailed_groups: bool = False
    include_people: bool = False
    include_schedule: bool = False
    include_task_flow: bool = False
    include_knowledge_graph: bool = False
