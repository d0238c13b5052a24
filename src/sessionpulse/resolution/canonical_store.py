"""Canonical value loading and per-category index construction.

Each category is read from its warehouse dimension table and turned into a
FuzzyIndex. A category that cannot be loaded ends up with an empty index;
resolution against it simply finds nothing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sessionpulse.resolution.fuzzy_index import FuzzyIndex
from sessionpulse.resolution.models import CanonicalRecord, Category, WeightedField

logger = logging.getLogger(__name__)


class CanonicalValueSource(Protocol):
    """Backing store of canonical dimension values."""

    def list_canonical_values(self, category: Category) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True)
class CategorySchema:
    """Where a category lives in the warehouse and how it is searched."""

    category: Category
    table: str
    primary_column: str
    fields: tuple[WeightedField, ...]

    @property
    def columns(self) -> list[str]:
        """Columns to read, primary first, without duplicates."""
        names = [self.primary_column]
        for f in self.fields:
            if f.name not in names:
                names.append(f.name)
        return names


CATEGORY_SCHEMAS: dict[Category, CategorySchema] = {
    # Given and family name hits outrank whole-name similarity
    Category.INSTRUCTOR: CategorySchema(
        category=Category.INSTRUCTOR,
        table="dim_instructor",
        primary_column="full_name",
        fields=(
            WeightedField("first_name", 2.0),
            WeightedField("last_name", 2.0),
            WeightedField("full_name", 1.0),
        ),
    ),
    Category.DOMAIN: CategorySchema(
        category=Category.DOMAIN,
        table="dim_domain",
        primary_column="domain_name",
        fields=(WeightedField("domain_name"),),
    ),
    Category.CLASS: CategorySchema(
        category=Category.CLASS,
        table="dim_class",
        primary_column="class_name",
        fields=(WeightedField("class_name"),),
    ),
    Category.TOPIC: CategorySchema(
        category=Category.TOPIC,
        table="dim_topic",
        primary_column="topic_code",
        fields=(WeightedField("topic_code"),),
    ),
}


def records_from_rows(category: Category, rows: list[dict[str, Any]]) -> list[CanonicalRecord]:
    """Convert warehouse rows into canonical records.

    Args:
        category: Category the rows belong to
        rows: Rows as dicts keyed by column name

    Returns:
        Records in row order; rows without a primary value are skipped and a
        repeated primary value keeps its first row
    """
    schema = CATEGORY_SCHEMAS[category]
    records = []
    seen = set()
    for row in rows:
        primary = str(row.get(schema.primary_column) or "").strip()
        if not primary or primary in seen:
            continue
        seen.add(primary)
        aux = {
            name: str(row.get(name) or "").strip()
            for name in schema.columns
            if name != schema.primary_column
        }
        records.append(CanonicalRecord(category=category, primary_field=primary, aux_fields=aux))
    return records


def load_category(source: CanonicalValueSource, category: Category) -> list[CanonicalRecord]:
    """Read one category's canonical records from the backing store.

    Raises:
        Exception: Whatever the backing store raises
    """
    rows = source.list_canonical_values(category)
    return records_from_rows(category, rows)


def empty_index(category: Category) -> FuzzyIndex:
    """Index for a category whose values are unavailable."""
    schema = CATEGORY_SCHEMAS[category]
    return FuzzyIndex([], schema.fields, primary_name=schema.primary_column)


def build_category_index(
    source: CanonicalValueSource,
    category: Category,
    field_threshold: float = 0.4,
    location_distance: int = 100,
) -> FuzzyIndex:
    """Load a category and build its fuzzy index.

    Args:
        source: Backing store
        category: Category to load
        field_threshold: Per-field match cut-off
        location_distance: Match offset scale

    Returns:
        FuzzyIndex over the category's records, empty if loading failed
    """
    schema = CATEGORY_SCHEMAS[category]
    try:
        records = load_category(source, category)
    except Exception as e:
        logger.error(
            f"Failed to load {category.value} values, leaving index empty: {e}",
            extra={"category": category.value},
            exc_info=True,
        )
        return empty_index(category)

    index = FuzzyIndex(
        records,
        schema.fields,
        primary_name=schema.primary_column,
        field_threshold=field_threshold,
        location_distance=location_distance,
    )
    logger.info(
        f"Loaded {len(index)} {category.value} values",
        extra={"category": category.value, "record_count": len(index)},
    )
    return index
