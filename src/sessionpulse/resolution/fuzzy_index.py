"""Approximate string search over the canonical values of one category.

Scores follow the Fuse.js convention the dashboards were tuned against:
0.0 is an exact match and values grow towards 1.0 as similarity drops.
Multi-field records combine per-field scores as a weighted geometric
product, so a hit on a heavily weighted field (an instructor's first or last
name) dominates a weaker whole-string similarity.
"""

import logging
import math
import re
import sys
from dataclasses import dataclass
from typing import Protocol, Sequence

from Levenshtein import distance as levenshtein_distance

from sessionpulse.resolution.models import CanonicalRecord, WeightedField

logger = logging.getLogger(__name__)

EPSILON = sys.float_info.epsilon

# Smallest score a non-identical field match can receive
MIN_PARTIAL_SCORE = 0.001


class SearchableIndex(Protocol):
    """Anything the resolver can query for one category."""

    def search(self, term: str) -> list[tuple[CanonicalRecord, float]]:
        ...


def normalize_term(text: str) -> str:
    """Normalize text for matching.

    Lowercases, removes periods (common in initials) and collapses
    whitespace.

    Args:
        text: Raw term or field value

    Returns:
        Normalized text ("" for empty input)
    """
    if not text:
        return ""
    normalized = text.lower().replace(".", "")
    return re.sub(r"\s+", " ", normalized).strip()


def _field_norm(text: str) -> float:
    """Length norm of a field: longer fields weigh less per match."""
    tokens = len(text.split(" ")) or 1
    return round(1 / math.sqrt(tokens), 3)


def _best_alignment(pattern: str, text: str) -> tuple[int, int]:
    """Find the substring of text closest to pattern.

    Windows of the pattern's length and one character either side are
    compared, so a single insertion or deletion costs exactly one error.

    Returns:
        Tuple of (edit distance, start offset of the best window)
    """
    width = len(pattern)
    if width >= len(text):
        return levenshtein_distance(pattern, text), 0

    best_errors, best_start = width + 1, 0
    for size in (width, width - 1, width + 1):
        if size < 1 or size > len(text):
            continue
        for start in range(len(text) - size + 1):
            errors = levenshtein_distance(pattern, text[start:start + size])
            if errors < best_errors or (errors == best_errors and start < best_start):
                best_errors, best_start = errors, start
        if best_errors == 0:
            break
    return best_errors, best_start


@dataclass(frozen=True)
class _IndexedField:
    name: str
    weight: float
    text: str
    norm: float


@dataclass(frozen=True)
class _IndexEntry:
    record: CanonicalRecord
    primary_text: str
    fields: tuple[_IndexedField, ...]


class FuzzyIndex:
    """Immutable fuzzy search structure built from a snapshot of records."""

    def __init__(
        self,
        records: Sequence[CanonicalRecord],
        fields: Sequence[WeightedField],
        primary_name: str | None = None,
        field_threshold: float = 0.4,
        location_distance: int = 100,
    ):
        """Build the index.

        Args:
            records: Canonical records, in backing-store order
            fields: Searchable fields with weights
            primary_name: Field name under which the primary value is searched
            field_threshold: Per-field score above which a field does not match
            location_distance: Characters over which a match offset costs 1.0
        """
        total_weight = sum(f.weight for f in fields) or 1.0
        self._field_threshold = field_threshold
        self._location_distance = max(location_distance, 1)

        entries = []
        for record in records:
            indexed = []
            for f in fields:
                text = normalize_term(record.value_of(f.name, primary_name))
                if text:
                    indexed.append(
                        _IndexedField(f.name, f.weight / total_weight, text, _field_norm(text))
                    )
            entries.append(
                _IndexEntry(record, normalize_term(record.primary_field), tuple(indexed))
            )
        self._entries = tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def records(self) -> tuple[CanonicalRecord, ...]:
        return tuple(entry.record for entry in self._entries)

    def search(self, term: str) -> list[tuple[CanonicalRecord, float]]:
        """Rank records by similarity to term.

        Args:
            term: Free-text term

        Returns:
            (record, score) pairs in ascending score order; equal scores keep
            load order. Records with no matching field are omitted.
        """
        pattern = normalize_term(term)
        if not pattern:
            return []

        scored = []
        for position, entry in enumerate(self._entries):
            score = self._score_entry(pattern, entry)
            if score is not None:
                scored.append((score, position, entry.record))

        scored.sort(key=lambda item: (item[0], item[1]))
        return [(record, score) for score, _, record in scored]

    def _score_entry(self, pattern: str, entry: _IndexEntry) -> float | None:
        if pattern == entry.primary_text:
            return 0.0

        total = 1.0
        matched = False
        for indexed in entry.fields:
            score = self._score_field(pattern, indexed.text)
            if score is None:
                continue
            matched = True
            total *= max(score, EPSILON) ** (indexed.weight * indexed.norm)

        if not matched:
            return None
        return min(max(total, 0.0), 1.0)

    def _score_field(self, pattern: str, text: str) -> float | None:
        if pattern == text:
            return 0.0

        errors, start = _best_alignment(pattern, text)
        score = errors / len(pattern) + start / self._location_distance
        if score > self._field_threshold:
            return None
        return max(score, MIN_PARTIAL_SCORE)
