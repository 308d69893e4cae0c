"""Tag enrichment — the main pipeline entry point.

``enrich_request`` composes the marker scanner, entity resolver and
snapshot budgeter: raw text in, merged working scope plus a resolution
summary out.  It is the only call the request-assembly layer needs for the
main path; autocomplete goes through :class:`SuggestionRanker` directly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from config.budget_policies import build_policy_table, get_budget_policy
from config.settings import get_settings
from models.entity import (
    AccessContext,
    EntityReference,
    ResolutionOutcome,
    ResolutionStatus,
)
from models.enrichment import (
    AmbiguousKey,
    EnrichmentResult,
    FailedKey,
    ResolutionSummary,
    ResolvedKey,
)
from models.scope import WorkingScope
from models.snapshot import BudgetPolicy
from services.entity_resolver import EntityResolver, group_resolved_by_category
from services.entity_store import AttributeFetcher, EntityDirectory, PermissionOracle
from services.marker_scanner import scan
from services.metrics import MetricsCollector, get_metrics_collector
from services.resolution_log import ResolutionLog, ResolutionLogEntry, ResolutionLogWriter
from services.snapshot_budgeter import SnapshotBudgeter, merge_into_scope

logger = logging.getLogger(__name__)

NO_MARKERS_SUMMARY = "No tags found in prompt"


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def build_summary_text(outcomes: list[ResolutionOutcome]) -> str:
    """One-line summary, e.g. ``Resolved: 1 system(s), 1 structural_group(s) | Unresolved: foo``."""
    parts: list[str] = []

    grouped = group_resolved_by_category(outcomes)
    if grouped:
        counts = ", ".join(f"{len(refs)} {category.value}(s)" for category, refs in grouped.items())
        parts.append(f"Resolved: {counts}")

    for status, label in (
        (ResolutionStatus.UNRESOLVED, "Unresolved"),
        (ResolutionStatus.AMBIGUOUS, "Ambiguous"),
        (ResolutionStatus.FAILED, "Failed"),
    ):
        keys = [o.normalized_key for o in outcomes if o.status == status]
        if keys:
            parts.append(f"{label}: {', '.join(keys)}")

    return " | ".join(parts)


def summarize(outcomes: list[ResolutionOutcome]) -> ResolutionSummary:
    """Split outcomes by status, preserving marker order within each list."""
    summary = ResolutionSummary(text=build_summary_text(outcomes))
    for outcome in outcomes:
        if outcome.status == ResolutionStatus.RESOLVED:
            if outcome.entity is not None:
                summary.resolved.append(
                    ResolvedKey(normalized_key=outcome.normalized_key, entity=outcome.entity)
                )
        elif outcome.status == ResolutionStatus.AMBIGUOUS:
            summary.ambiguous.append(
                AmbiguousKey(normalized_key=outcome.normalized_key, candidates=outcome.candidates)
            )
        elif outcome.status == ResolutionStatus.UNRESOLVED:
            summary.unresolved.append(outcome.normalized_key)
        else:
            summary.failed.append(
                FailedKey(normalized_key=outcome.normalized_key, error=outcome.error or "")
            )
    return summary


def clarification_messages(summary: ResolutionSummary) -> list[str]:
    """Plain statements for markers the requester should correct."""
    messages = [f"Could not find anything named @{key}." for key in summary.unresolved]
    for amb in summary.ambiguous:
        messages.append(
            f"Found {len(amb.candidates)} things named @{amb.normalized_key} "
            f"({' or '.join(amb.describe_candidates())}). Which one did you mean?"
        )
    for failed in summary.failed:
        messages.append(f"Could not look up @{failed.normalized_key} right now.")
    return messages


def format_for_prompt(result: EnrichmentResult) -> str:
    """Render the referenced-entities block handed to the model."""
    summary = result.resolution_summary
    lines = ["Referenced Entities:"]

    if summary.resolved:
        lines.append("\nResolved:")
        for item in summary.resolved:
            lines.append(
                f'- @{item.normalized_key} → {item.entity.category.value}: "{item.entity.display_name}"'
            )

    if summary.unresolved:
        lines.append("\nUnresolved (not found):")
        lines.extend(f"- @{key}" for key in summary.unresolved)

    if summary.ambiguous:
        lines.append("\nAmbiguous (multiple matches):")
        for amb in summary.ambiguous:
            lines.append(f"- @{amb.normalized_key} → {' OR '.join(amb.describe_candidates())}")

    if summary.failed:
        lines.append("\nLookup failed:")
        lines.extend(f"- @{item.normalized_key}" for item in summary.failed)

    if result.dropped_for_budget:
        lines.append("\nOmitted (context budget):")
        lines.extend(
            f'- {ref.category.value}: "{ref.display_name}"' for ref in result.dropped_for_budget
        )

    return "\n".join(lines)


def _distinct_resolved(outcomes: list[ResolutionOutcome]) -> list[EntityReference]:
    seen: set[EntityReference] = set()
    entities: list[EntityReference] = []
    for outcome in outcomes:
        entity = outcome.entity
        if outcome.status == ResolutionStatus.RESOLVED and entity is not None and entity not in seen:
            seen.add(entity)
            entities.append(entity)
    return entities


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TagEnrichmentService:
    """Scanner → resolver → budgeter, wired to injected collaborators.

    Args:
        directory: Permission-scoped entity lookup.
        permissions: Access check for shared-in groups.
        fetcher: Attribute source for snapshots.
        policies: Purpose → policy table; defaults to the built-in table.
        resolution_log: Optional audit sink, written fire-and-forget.
        metrics: Metrics collector; defaults to the process-wide collector.
    """

    def __init__(
        self,
        directory: EntityDirectory,
        permissions: PermissionOracle,
        fetcher: AttributeFetcher,
        policies: Mapping[str, BudgetPolicy] | None = None,
        resolution_log: ResolutionLog | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        if metrics is None:
            metrics = get_metrics_collector()
        self.metrics = metrics
        self.resolver = EntityResolver(directory, permissions, metrics=metrics)
        self.budgeter = SnapshotBudgeter(fetcher, metrics=metrics)
        self._policies = dict(policies) if policies is not None else build_policy_table()
        self._log_writer: ResolutionLogWriter | None = None
        if resolution_log is not None and get_settings().tag_resolution_log_enabled:
            self._log_writer = ResolutionLogWriter(resolution_log)

    def policy_for(self, purpose: str) -> BudgetPolicy:
        """Policy for *purpose*; raises ``BudgetPolicyNotFoundError`` if unknown."""
        return get_budget_policy(purpose, self._policies)

    async def enrich_request(
        self,
        raw_text: str,
        working_scope: WorkingScope,
        access: AccessContext,
        purpose: str,
        policy: BudgetPolicy | None = None,
    ) -> EnrichmentResult:
        """Resolve the markers in *raw_text* and merge them into *working_scope*.

        *policy* overrides the purpose table when given.  The caller's scope
        is never modified; ``merged_scope`` is a new object.

        Raises:
            BudgetPolicyNotFoundError: no policy given and none registered
                for *purpose*.
        """
        if policy is None:
            policy = self.policy_for(purpose)

        scan_result = scan(raw_text, max_markers=policy.max_markers_per_request)
        if not scan_result.occurrences:
            return EnrichmentResult(
                merged_scope=working_scope.model_copy(deep=True),
                resolution_summary=ResolutionSummary(text=NO_MARKERS_SUMMARY),
                scan=scan_result,
            )

        outcomes = await self.resolver.resolve_all(scan_result.keys, access)
        self._submit_log(outcomes, purpose, access)

        build = await self.budgeter.build_snapshots(_distinct_resolved(outcomes), purpose, policy)
        merged = merge_into_scope(working_scope, build.snapshots)
        summary = summarize(outcomes)

        logger.info(
            "Enriched request for purpose '%s': %s",
            purpose, summary.text or "no outcomes",
        )
        return EnrichmentResult(
            merged_scope=merged,
            resolution_summary=summary,
            dropped_for_budget=build.dropped_for_budget,
            excluded_by_policy=build.excluded_by_policy,
            snapshot_failures=build.failures,
            snapshots=build.snapshots,
            scan=scan_result,
        )

    def _submit_log(
        self, outcomes: list[ResolutionOutcome], purpose: str, access: AccessContext
    ) -> None:
        if self._log_writer is None:
            return
        try:
            entries = [
                ResolutionLogEntry.from_outcome(o, purpose, access.actor_id) for o in outcomes
            ]
            self._log_writer.submit(entries)
        except Exception:
            logger.warning("Could not schedule resolution log write", exc_info=True)

    async def flush_resolution_log(self) -> None:
        """Await pending audit writes (shutdown hook, tests)."""
        if self._log_writer is not None:
            await self._log_writer.flush()
