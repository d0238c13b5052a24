"""Turn resolution outcomes into filter directives for the SQL generator.

Directives are plain descriptive sentences; no SQL is produced here. The
column names refer to the join aliases documented in the generator's schema
prompt (fs fact, di instructor, dd domain, dc class, dt topic).
"""

from typing import Iterable

from sessionpulse.resolution.models import Ambiguous, Category, ResolvedTerm, SinglyResolved

FILTER_COLUMNS: dict[Category, str] = {
    Category.INSTRUCTOR: "di.full_name",
    Category.DOMAIN: "dd.domain_name",
    Category.CLASS: "dc.class_name",
    Category.TOPIC: "dt.topic_code",
}


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_context(resolutions: Iterable[tuple[str, ResolvedTerm]]) -> list[str]:
    """Build one directive per resolved or ambiguous term.

    Args:
        resolutions: (original term, outcome) pairs in question order

    Returns:
        Directives in input order; unresolved terms produce none
    """
    directives = []
    for term, resolved in resolutions:
        if isinstance(resolved, SinglyResolved):
            match = resolved.candidate
            value = _quote(match.value)
            directives.append(
                f"User means {match.category.label} {value}. "
                f"Filter by {FILTER_COLUMNS[match.category]} = {value}"
            )
        elif isinstance(resolved, Ambiguous):
            names = ", ".join(_quote(c.value) for c in resolved.candidates)
            directives.append(
                f"The term {_quote(term)} is ambiguous and matches multiple entities: {names}. "
                f"Filter by checking if the name/title is IN ({names}) OR matches the partial term."
            )
    return directives


def format_context_block(directives: list[str]) -> str:
    """Wrap directives into the block appended to the user's question."""
    if not directives:
        return ""
    return "\n\n(SYSTEM CONTEXT:\n" + "\n".join(directives) + "\n)"
