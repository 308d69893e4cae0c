"""Resolution audit log — append-only record of marker outcomes.

Writing is fire-and-forget: the enrichment service hands entries to
:class:`ResolutionLogWriter`, which writes them in a background task and
only logs when the backend fails.  A failing audit log never fails a
request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from models.entity import EntityCategory, ResolutionOutcome, ResolutionStatus

logger = logging.getLogger(__name__)


class ResolutionLogEntry(BaseModel):
    """One audit row: key, outcome, category, purpose, timestamp."""

    normalized_key: str
    status: ResolutionStatus
    category: EntityCategory | None = None
    entity_id: str | None = None
    purpose: str
    actor_id: str
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def from_outcome(
        cls, outcome: ResolutionOutcome, purpose: str, actor_id: str
    ) -> ResolutionLogEntry:
        category = None
        entity_id = None
        if outcome.entity is not None:
            category = outcome.entity.category
            entity_id = outcome.entity.id
        elif outcome.candidates:
            category = outcome.candidates[0].category
        return cls(
            normalized_key=outcome.normalized_key,
            status=outcome.status,
            category=category,
            entity_id=entity_id,
            purpose=purpose,
            actor_id=actor_id,
        )


# ── Abstract Interface ───────────────────────────────────────


class ResolutionLog(ABC):
    """Append-only sink for resolution entries."""

    @abstractmethod
    async def append(self, entries: list[ResolutionLogEntry]) -> None:
        ...


# ── In-Memory Implementation ────────────────────────────────


class InMemoryResolutionLog(ResolutionLog):
    def __init__(self) -> None:
        self.entries: list[ResolutionLogEntry] = []

    async def append(self, entries: list[ResolutionLogEntry]) -> None:
        self.entries.extend(entries)


# ── Background writer ────────────────────────────────────────


class ResolutionLogWriter:
    """Schedules log writes off the request path.

    Usage::

        writer = ResolutionLogWriter(log)
        writer.submit(entries)       # returns immediately
        await writer.flush()         # e.g. on shutdown or in tests
    """

    def __init__(self, log: ResolutionLog) -> None:
        self._log = log
        self._pending: set[asyncio.Task[None]] = set()

    def submit(self, entries: list[ResolutionLogEntry]) -> None:
        if not entries:
            return
        task = asyncio.create_task(self._write(entries))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entries: list[ResolutionLogEntry]) -> None:
        try:
            await self._log.append(entries)
        except Exception:
            logger.warning(
                "Resolution log write failed (%d entries dropped)",
                len(entries),
                exc_info=True,
            )

    async def flush(self) -> None:
        """Wait for all pending writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def pending(self) -> int:
        return len(self._pending)
