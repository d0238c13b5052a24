"""Ambiguity-aware resolution of free-text terms to canonical values.

A term is searched in every category at once. Rather than picking the single
best hit, every candidate within a fixed absolute margin of the best score is
kept, so near-ties (two instructors sharing a first name) surface as an
ambiguous result the query generator can express as a disjunction.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from sessionpulse.core.config import settings
from sessionpulse.resolution.fuzzy_index import SearchableIndex
from sessionpulse.resolution.models import (
    UNRESOLVED,
    Ambiguous,
    Category,
    MatchCandidate,
    ResolvedTerm,
    SinglyResolved,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionPolicy:
    """Scoring rules applied to the merged candidates of one term.

    Attributes:
        score_floor: Candidates scoring at or above this are discarded
        ambiguity_margin: Absolute window above the best score kept as ties
        max_candidates: Cap on retained candidates
    """

    score_floor: float = 0.4
    ambiguity_margin: float = 0.05
    max_candidates: int = 5

    @classmethod
    def from_settings(cls) -> "ResolutionPolicy":
        return cls(
            score_floor=settings.ENTITY_SCORE_FLOOR,
            ambiguity_margin=settings.ENTITY_AMBIGUITY_MARGIN,
            max_candidates=settings.ENTITY_MAX_CANDIDATES,
        )

    def select(self, candidates: Iterable[MatchCandidate]) -> ResolvedTerm:
        """Turn raw candidates into a resolution outcome.

        Args:
            candidates: Candidates in discovery order

        Returns:
            UNRESOLVED, SinglyResolved or Ambiguous
        """
        viable = [c for c in candidates if c.score < self.score_floor]
        if not viable:
            return UNRESOLVED

        # Stable: equal scores keep discovery order
        viable.sort(key=lambda c: c.score)

        threshold = viable[0].score + self.ambiguity_margin
        retained = [c for c in viable if c.score <= threshold][: self.max_candidates]

        if len(retained) == 1:
            return SinglyResolved(retained[0])
        return Ambiguous(tuple(retained))


DEFAULT_POLICY = ResolutionPolicy()


def collect_candidates(
    term: str, indexes: Mapping[Category, SearchableIndex]
) -> list[MatchCandidate]:
    """Query every category index and merge the raw hits.

    Categories are visited in declaration order; a category without an index
    contributes nothing.
    """
    candidates = []
    for category in Category:
        index = indexes.get(category)
        if index is None:
            continue
        for record, score in index.search(term):
            candidates.append(
                MatchCandidate(category=category, value=record.primary_field, score=score)
            )
    return candidates


def resolve_term(
    term: str,
    indexes: Mapping[Category, SearchableIndex],
    policy: ResolutionPolicy = DEFAULT_POLICY,
) -> ResolvedTerm:
    """Resolve one free-text term against all categories.

    Args:
        term: Term extracted from the user's question
        indexes: Fuzzy index per category
        policy: Floor, margin and cap to apply

    Returns:
        Resolution outcome. Blank terms are UNRESOLVED without any lookup.
    """
    if not term or not term.strip():
        return UNRESOLVED

    result = policy.select(collect_candidates(term, indexes))

    if isinstance(result, SinglyResolved):
        logger.debug(
            f'[Match] "{term}" -> {result.candidate.value} ({result.candidate.category.value})',
            extra={"term": term, "score": result.candidate.score},
        )
    elif isinstance(result, Ambiguous):
        logger.info(
            f'[Ambiguity] "{term}" matched {len(result.candidates)} items',
            extra={"term": term, "values": [c.value for c in result.candidates]},
        )
    else:
        logger.debug(f'[NoMatch] "{term}"', extra={"term": term})

    return result
