"""Marker scanner — extracts ``@name`` references from free text.

Pure text transformation, no I/O.  A marker is ``@`` followed by one or
more ASCII letters or digits; spaces and punctuation end the marker.  Users
type ``@marketingplan`` for an entity named "Marketing Plan", so both the
marker and every candidate display name go through :func:`normalize_name`
before comparison.
"""

from __future__ import annotations

import logging
import re

from config.settings import get_settings
from models.entity import MarkerOccurrence, ScanResult

logger = logging.getLogger(__name__)

_MARKER_RE = re.compile(r"@([A-Za-z0-9]+)")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_name(text: str) -> str:
    """Lower-case *text* and strip every non-alphanumeric character.

    ``"Rachel's Wedding Day"`` → ``"rachelsweddingday"``.
    """
    if not text:
        return ""
    return _NON_ALNUM_RE.sub("", text.lower())


def scan(raw_text: str, max_markers: int | None = None) -> ScanResult:
    """Scan *raw_text* left to right for markers.

    Stops emitting once *max_markers* occurrences have been collected.
    ``truncated`` is set only when at least one further marker exists, and
    ``markers_dropped`` counts how many were left out.
    """
    cap = get_settings().tag_max_markers if max_markers is None else max_markers
    if not raw_text:
        return ScanResult()

    occurrences: list[MarkerOccurrence] = []
    dropped = 0

    for match in _MARKER_RE.finditer(raw_text):
        key = normalize_name(match.group(1))
        if not key:
            continue
        if len(occurrences) >= cap:
            dropped += 1
            continue
        occurrences.append(
            MarkerOccurrence(
                raw_text=match.group(0),
                start_offset=match.start(),
                normalized_key=key,
            )
        )

    if dropped:
        logger.warning(
            "Marker limit reached (max=%d); %d marker(s) ignored", cap, dropped
        )

    return ScanResult(
        occurrences=tuple(occurrences),
        truncated=dropped > 0,
        markers_dropped=dropped,
    )


def unique_keys(occurrences: tuple[MarkerOccurrence, ...] | list[MarkerOccurrence]) -> list[str]:
    """Distinct normalized keys in first-occurrence order."""
    seen: set[str] = set()
    keys: list[str] = []
    for occ in occurrences:
        if occ.normalized_key not in seen:
            seen.add(occ.normalized_key)
            keys.append(occ.normalized_key)
    return keys
