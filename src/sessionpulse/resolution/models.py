"""Shared types for entity resolution.

Canonical records flow from the warehouse into the fuzzy indexes; match
candidates and resolved terms flow from the resolver into the context builder.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Category(str, Enum):
    """Dimension a canonical value belongs to."""

    INSTRUCTOR = "instructor"
    DOMAIN = "domain"
    CLASS = "class"
    TOPIC = "topic"

    @property
    def label(self) -> str:
        """Human-readable name used in context directives."""
        return self.value.capitalize()


@dataclass(frozen=True)
class WeightedField:
    """Searchable field of a canonical record and its relative weight."""

    name: str
    weight: float = 1.0


@dataclass(frozen=True)
class CanonicalRecord:
    """One authoritative dimension value, immutable within a load cycle."""

    category: Category
    primary_field: str
    aux_fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "aux_fields", MappingProxyType(dict(self.aux_fields)))

    def value_of(self, field_name: str, primary_name: str | None = None) -> str:
        """Text of a searchable field.

        Args:
            field_name: Field to read
            primary_name: Name under which the primary value is addressed

        Returns:
            Field text, or "" when the record has no such field
        """
        if field_name == primary_name:
            return self.primary_field
        return self.aux_fields.get(field_name, "")


@dataclass(frozen=True)
class MatchCandidate:
    """A canonical value proposed for a term. Lower score means more similar."""

    category: Category
    value: str
    score: float


@dataclass(frozen=True)
class Unresolved:
    """No canonical value is close enough to the term."""

    status = "unresolved"

    @property
    def candidates(self) -> tuple[MatchCandidate, ...]:
        return ()


@dataclass(frozen=True)
class SinglyResolved:
    """Exactly one canonical value matches the term."""

    candidate: MatchCandidate
    status = "resolved"

    @property
    def candidates(self) -> tuple[MatchCandidate, ...]:
        return (self.candidate,)


@dataclass(frozen=True)
class Ambiguous:
    """Several canonical values match the term about equally well."""

    candidates: tuple[MatchCandidate, ...]
    status = "ambiguous"


ResolvedTerm = Unresolved | SinglyResolved | Ambiguous

UNRESOLVED = Unresolved()
