"""LLM-based extraction of entity terms from a user's question.

Terms are the fragments that may name an instructor, domain, class or topic
("Robert", "data sci", "live classes"). Extraction never fails the request:
any problem yields an empty list and resolution is simply skipped.
"""

import json
import logging
import re

from openai import OpenAI

from sessionpulse.core.config import settings

logger = logging.getLogger(__name__)

_EXTRACTION_PROMPT = """Extract every fragment of this analytics question that could name an instructor (person), a domain/track (e.g. "Backend", "Data Science"), a class title, or a session topic/format (e.g. "Live Class", "Test Review Session").
Copy each fragment exactly as written; do not expand, correct or translate it.
Do not include dates, years, months, quarters, metrics or generic words such as "instructor" or "rating".
Return ONLY a JSON array of strings, e.g. ["Robert", "data science"]. Return [] if there are none.

Question: {question}

JSON:"""


def extract_terms(user_query: str, correlation_id: str | None = None) -> list[str]:
    """Extract free-text entity terms from a question.

    Args:
        user_query: Natural language question
        correlation_id: Optional correlation ID for logging

    Returns:
        Terms in question order, case-insensitively deduplicated. Empty when
        the LLM is disabled or unconfigured, or when extraction fails.
    """
    log_extra = {"correlation_id": correlation_id} if correlation_id else {}

    if not user_query or not user_query.strip():
        return []

    if not settings.LLM_ENABLED or not settings.FEATHERLESS_API_KEY:
        logger.debug("LLM unavailable, skipping term extraction", extra=log_extra)
        return []

    try:
        client = OpenAI(
            base_url=settings.FEATHERLESS_BASE_URL,
            api_key=settings.FEATHERLESS_API_KEY,
        )
        response = client.chat.completions.create(
            model=settings.FEATHERLESS_LLM_MODEL,
            messages=[
                {"role": "user", "content": _EXTRACTION_PROMPT.format(question=user_query)}
            ],
            max_tokens=200,
            temperature=0,
        )
        content = response.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"Term extraction failed: {e}", extra=log_extra)
        return []

    terms = parse_terms(content)
    logger.info(
        f"Extracted {len(terms)} terms from question",
        extra={**log_extra, "terms": terms},
    )
    return terms


def parse_terms(response: str) -> list[str]:
    """Parse the extractor's JSON answer into a clean list of terms.

    Accepts a JSON array of strings or of {"text": ...} objects, optionally
    wrapped in a markdown code fence. Anything else yields an empty list.
    """
    text = re.sub(r"^```[a-zA-Z]*\s*|\s*```$", "", response.strip()).strip()

    # Models sometimes add prose around the array
    match = re.search(r"\[.*\]", text, re.DOTALL)
    if match:
        text = match.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Could not parse term extraction response: {response[:200]}")
        return []

    if not isinstance(parsed, list):
        logger.warning(f"Term extraction returned non-list response: {response[:200]}")
        return []

    terms: list[str] = []
    seen: set[str] = set()
    for item in parsed:
        if isinstance(item, dict):
            item = item.get("text")
        if not isinstance(item, str):
            continue
        term = item.strip()
        key = term.lower()
        if term and key not in seen:
            seen.add(key)
            terms.append(term)
    return terms
