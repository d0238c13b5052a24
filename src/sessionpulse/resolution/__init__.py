"""Entity resolution for natural language queries.

This module maps free-text terms from a user's question onto canonical
instructor, domain, class and topic values before SQL is generated.
"""

from sessionpulse.resolution.context_builder import build_context, format_context_block
from sessionpulse.resolution.models import (
    UNRESOLVED,
    Ambiguous,
    CanonicalRecord,
    Category,
    MatchCandidate,
    ResolvedTerm,
    SinglyResolved,
    Unresolved,
)
from sessionpulse.resolution.resolver import ResolutionPolicy, resolve_term
from sessionpulse.resolution.service import ResolutionService

__all__ = [
    "build_context",
    "format_context_block",
    "UNRESOLVED",
    "Ambiguous",
    "CanonicalRecord",
    "Category",
    "MatchCandidate",
    "ResolvedTerm",
    "SinglyResolved",
    "Unresolved",
    "ResolutionPolicy",
    "resolve_term",
    "ResolutionService",
]
