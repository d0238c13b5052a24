"""Resolution service: owns the per-category indexes for the process lifetime.

The indexes are published through a single dict reference. Readers grab the
reference once per call and never see a half-built mapping; writers build a
new dict and swap it in.
"""

import logging
import time
from typing import Callable, Iterable

from sessionpulse.core.config import settings
from sessionpulse.resolution.canonical_store import (
    CanonicalValueSource,
    build_category_index,
    empty_index,
)
from sessionpulse.resolution.fuzzy_index import FuzzyIndex
from sessionpulse.resolution.models import Category, ResolvedTerm
from sessionpulse.resolution.resolver import ResolutionPolicy, resolve_term

logger = logging.getLogger(__name__)


class ResolutionService:
    """Entity resolution over in-memory indexes of canonical values."""

    def __init__(
        self,
        source_factory: Callable[[], CanonicalValueSource],
        policy: ResolutionPolicy | None = None,
        field_threshold: float | None = None,
        location_distance: int | None = None,
    ):
        """Create an empty service; call warm_up() to load the indexes.

        Args:
            source_factory: Creates the backing store client when loading
            policy: Resolution policy (default: from settings)
            field_threshold: Per-field match cut-off (default: from settings)
            location_distance: Match offset scale (default: from settings)
        """
        self._source_factory = source_factory
        self.policy = policy or ResolutionPolicy.from_settings()
        self._field_threshold = (
            settings.FUZZY_FIELD_THRESHOLD if field_threshold is None else field_threshold
        )
        self._location_distance = (
            settings.FUZZY_LOCATION_DISTANCE if location_distance is None else location_distance
        )
        self._indexes: dict[Category, FuzzyIndex] = {}
        self._warm = False

    @property
    def is_warm(self) -> bool:
        """Whether a full load cycle has completed."""
        return self._warm

    def index_sizes(self) -> dict[str, int]:
        """Record count per category in the published indexes."""
        indexes = self._indexes
        return {
            category.value: len(indexes[category]) if category in indexes else 0
            for category in Category
        }

    def warm_up(self) -> None:
        """Load every category, publishing each index as soon as it is built.

        Requests served meanwhile resolve against the categories loaded so far.
        """
        start_time = time.time()
        source = self._open_source()
        for category in Category:
            index = self._build(source, category)
            self._indexes = {**self._indexes, category: index}
        self._warm = True
        logger.info(
            "Entity indexes ready",
            extra={
                "index_sizes": self.index_sizes(),
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )

    def refresh(self) -> dict[str, int]:
        """Rebuild all indexes off to the side and publish them at once.

        Returns:
            Record count per category after the swap
        """
        start_time = time.time()
        source = self._open_source()
        replacement = {category: self._build(source, category) for category in Category}
        self._indexes = replacement
        self._warm = True
        sizes = self.index_sizes()
        logger.info(
            "Entity indexes refreshed",
            extra={"index_sizes": sizes, "duration_seconds": round(time.time() - start_time, 2)},
        )
        return sizes

    def resolve(self, term: str) -> ResolvedTerm:
        """Resolve one term against the currently published indexes."""
        return resolve_term(term, self._indexes, self.policy)

    def resolve_terms(self, terms: Iterable[str]) -> list[tuple[str, ResolvedTerm]]:
        """Resolve terms in order, pairing each with its outcome."""
        indexes = self._indexes
        return [(term, resolve_term(term, indexes, self.policy)) for term in terms]

    def _open_source(self) -> CanonicalValueSource | None:
        try:
            return self._source_factory()
        except Exception as e:
            logger.error(
                f"Backing store unavailable, entity indexes will be empty: {e}",
                exc_info=True,
            )
            return None

    def _build(self, source: CanonicalValueSource | None, category: Category) -> FuzzyIndex:
        if source is None:
            return empty_index(category)
        return build_category_index(
            source,
            category,
            field_threshold=self._field_threshold,
            location_distance=self._location_distance,
        )
