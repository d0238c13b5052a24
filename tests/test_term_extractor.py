"""Unit tests for entity term extraction."""

import json
from unittest.mock import Mock, patch

import pytest

from sessionpulse.core.config import settings
from sessionpulse.nlq.term_extractor import extract_terms, parse_terms


@pytest.fixture(autouse=True)
def llm_settings(monkeypatch):
    monkeypatch.setattr(settings, "LLM_ENABLED", True)
    monkeypatch.setattr(settings, "FEATHERLESS_API_KEY", "test-key")


def _client_returning(content):
    mock_client = Mock()
    mock_response = Mock()
    mock_message = Mock()
    mock_message.content = content
    mock_choice = Mock()
    mock_choice.message = mock_message
    mock_response.choices = [mock_choice]
    mock_client.chat.completions.create.return_value = mock_response
    return mock_client


class TestExtractTerms:
    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_returns_terms_from_llm(self, mock_openai_class):
        mock_client = _client_returning(json.dumps(["Robert", "data science"]))
        mock_openai_class.return_value = mock_client

        terms = extract_terms("How did Robert do in data science last month?")

        assert terms == ["Robert", "data science"]
        prompt = mock_client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "How did Robert do in data science last month?" in prompt

    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_llm_failure_degrades_to_empty(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = RuntimeError("connection reset")
        mock_openai_class.return_value = mock_client

        assert extract_terms("How did Robert do?") == []

    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_unparseable_answer_degrades_to_empty(self, mock_openai_class):
        mock_openai_class.return_value = _client_returning("I could not find any names.")

        assert extract_terms("How did Robert do?") == []

    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_blank_question_skips_llm(self, mock_openai_class):
        assert extract_terms("   ") == []
        mock_openai_class.assert_not_called()

    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_missing_api_key_skips_llm(self, mock_openai_class, monkeypatch):
        monkeypatch.setattr(settings, "FEATHERLESS_API_KEY", "")

        assert extract_terms("How did Robert do?") == []
        mock_openai_class.assert_not_called()

    @patch("sessionpulse.nlq.term_extractor.OpenAI")
    def test_disabled_llm_skips_extraction(self, mock_openai_class, monkeypatch):
        monkeypatch.setattr(settings, "LLM_ENABLED", False)

        assert extract_terms("How did Robert do?") == []
        mock_openai_class.assert_not_called()

    def test_default_client_never_reaches_network(self, mock_openai_client):
        assert extract_terms("How did Robert do?") == []
        mock_openai_client.chat.completions.create.assert_called_once()


class TestParseTerms:
    def test_plain_array(self):
        assert parse_terms('["Backend", "Live Class"]') == ["Backend", "Live Class"]

    def test_code_fence_and_prose(self):
        response = 'Here you go:\n```json\n["Smith"]\n```'

        assert parse_terms(response) == ["Smith"]

    def test_object_items(self):
        assert parse_terms('[{"text": "Robert", "type": "person"}, {"text": "Backend"}]') == [
            "Robert",
            "Backend",
        ]

    def test_duplicates_and_blanks_removed(self):
        assert parse_terms('["Robert", "robert", " ", "", 42, "Backend "]') == ["Robert", "Backend"]

    def test_empty_array(self):
        assert parse_terms("[]") == []

    def test_non_list_json(self):
        assert parse_terms('{"term": "Robert"}') == []
