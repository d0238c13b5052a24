"""Pytest configuration and shared fixtures."""

import pytest
from unittest.mock import MagicMock, patch

from sessionpulse.resolution.models import Category


@pytest.fixture(autouse=True)
def mock_openai_client():
    """Mock OpenAI client to avoid API calls during tests."""
    mock_client = MagicMock()

    # Mock chat completions
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = "[]"
    mock_client.chat.completions.create.return_value = mock_response

    with patch('sessionpulse.nlq.llm_sql.OpenAI') as mock_sql_openai, \
            patch('sessionpulse.nlq.term_extractor.OpenAI') as mock_terms_openai:
        mock_sql_openai.return_value = mock_client
        mock_terms_openai.return_value = mock_client
        yield mock_client


class FakeCanonicalSource:
    """In-memory backing store keyed by category."""

    def __init__(self, rows=None, failing=()):
        self.rows = rows or {}
        self.failing = set(failing)
        self.calls = []

    def list_canonical_values(self, category):
        self.calls.append(category)
        if category in self.failing:
            raise ConnectionError(f"{category.value} table unreachable")
        return list(self.rows.get(category, []))


@pytest.fixture
def canonical_rows():
    """Small but realistic set of dimension rows."""
    return {
        Category.INSTRUCTOR: [
            {"full_name": "Robert Smith", "first_name": "Robert", "last_name": "Smith"},
            {"full_name": "Robert Jones", "first_name": "Robert", "last_name": "Jones"},
            {"full_name": "Konstantinos Pappas", "first_name": "Konstantinos", "last_name": "Pappas"},
        ],
        Category.DOMAIN: [
            {"domain_name": "Backend"},
            {"domain_name": "Data Science"},
            {"domain_name": "Frontend"},
        ],
        Category.CLASS: [
            {"class_name": "Backend Bootcamp 2024"},
            {"class_name": "Evening Data Cohort"},
        ],
        Category.TOPIC: [
            {"topic_code": "Live Class"},
            {"topic_code": "Test Review Session"},
        ],
    }


@pytest.fixture
def fake_source(canonical_rows):
    return FakeCanonicalSource(canonical_rows)


@pytest.fixture
def source_factory():
    """Factory for in-memory backing stores, e.g. with failing categories."""
    return FakeCanonicalSource
