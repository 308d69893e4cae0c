"""Pipeline output models — resolution summary, enrichment result, suggestions."""

from __future__ import annotations

from pydantic import Field

from models.base import CamelModel, FrozenCamelModel
from models.entity import EntityCategory, EntityReference, ScanResult
from models.scope import WorkingScope
from models.snapshot import Snapshot, SnapshotFailure


class ResolvedKey(FrozenCamelModel):
    normalized_key: str
    entity: EntityReference


class AmbiguousKey(FrozenCamelModel):
    normalized_key: str
    candidates: tuple[EntityReference, ...]

    def describe_candidates(self) -> list[str]:
        """``"category: Display Name"`` per candidate, for user prompts."""
        return [f"{c.category.value}: {c.display_name}" for c in self.candidates]


class FailedKey(FrozenCamelModel):
    normalized_key: str
    error: str


class ResolutionSummary(CamelModel):
    """Per-status view of the resolution outcomes, in marker order."""

    resolved: list[ResolvedKey] = Field(default_factory=list)
    ambiguous: list[AmbiguousKey] = Field(default_factory=list)
    unresolved: list[str] = Field(default_factory=list)
    failed: list[FailedKey] = Field(default_factory=list)
    text: str = ""


class EnrichmentResult(CamelModel):
    """Output of ``TagEnrichmentService.enrich_request``."""

    merged_scope: WorkingScope
    resolution_summary: ResolutionSummary
    dropped_for_budget: list[EntityReference] = Field(default_factory=list)
    excluded_by_policy: list[EntityReference] = Field(default_factory=list)
    snapshot_failures: list[SnapshotFailure] = Field(default_factory=list)
    snapshots: list[Snapshot] = Field(default_factory=list)
    scan: ScanResult = Field(default_factory=ScanResult)


class SuggestionEntry(FrozenCamelModel):
    """A single autocomplete candidate."""

    normalized_key: str
    display_name: str
    category: EntityCategory
    entity_id: str
    subtitle: str = ""
    score: int = 0
