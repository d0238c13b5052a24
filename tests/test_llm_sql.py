"""Unit tests for NLQ LLM SQL Generation module."""

import json
from unittest.mock import Mock, patch

import httpx
import pytest
from openai import APIConnectionError, OpenAIError

from sessionpulse.core.config import settings
from sessionpulse.nlq.llm_sql import (
    SqlGenerationError,
    SqlSafetyError,
    generate_sql_from_nl,
)


@pytest.fixture(autouse=True)
def llm_settings(monkeypatch):
    """Configured LLM with retries that do not sleep."""
    monkeypatch.setattr(settings, "LLM_ENABLED", True)
    monkeypatch.setattr(settings, "FEATHERLESS_API_KEY", "test-key")
    monkeypatch.setattr(settings, "LLM_MAX_RETRIES", 3)
    monkeypatch.setattr(settings, "LLM_RETRY_BACKOFF_SECONDS", 0)


def _client_returning(content):
    """Mock OpenAI client whose chat completion returns content."""
    mock_client = Mock()
    mock_response = Mock()
    mock_message = Mock()
    mock_message.content = content
    mock_choice = Mock()
    mock_choice.message = mock_message
    mock_response.choices = [mock_choice]
    mock_client.chat.completions.create.return_value = mock_response
    return mock_client


def _sql_answer(sql, explanation="Explanation."):
    return json.dumps({"sql": sql, "explanation": explanation})


class TestLLMSQLGeneration:
    """Tests for LLM-based SQL generation."""

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_successful_sql_generation(self, mock_openai_class):
        """Test successful SQL generation from natural language."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "SELECT AVG(average_rating) FROM `sessionpulse_core.fact_sessions` LIMIT 100",
            "Average rating across all sessions.",
        ))

        result = generate_sql_from_nl("What is the average rating?")

        assert "sql" in result
        assert "explanation" in result
        assert "SELECT" in result["sql"]
        assert "sessionpulse_core" in result["sql"]

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_context_block_appended_to_user_message(self, mock_openai_class):
        """Test that resolved entity context reaches the LLM with the question."""
        mock_client = _client_returning(_sql_answer(
            "SELECT * FROM `sessionpulse_core.fact_sessions` LIMIT 10"
        ))
        mock_openai_class.return_value = mock_client
        context_block = (
            "\n\n(SYSTEM CONTEXT:\nUser means Instructor 'Robert Smith'. "
            "Filter by di.full_name = 'Robert Smith'\n)"
        )

        generate_sql_from_nl("How is Smith doing?", context_block=context_block)

        messages = mock_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "How is Smith doing?" + context_block}

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_sql_generation_with_conversation_history(self, mock_openai_class):
        """Test SQL generation with conversation history."""
        mock_client = _client_returning(_sql_answer(
            "SELECT * FROM `sessionpulse_core.fact_sessions` LIMIT 100"
        ))
        mock_openai_class.return_value = mock_client

        history = [
            {"role": "user", "content": "What tables are available?"},
            {"role": "assistant", "content": "There are fact and dimension tables."},
        ]

        result = generate_sql_from_nl("Show me sessions", history=history)

        assert "sql" in result
        messages = mock_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[1:3] == history

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_code_fenced_response_is_accepted(self, mock_openai_class):
        """Test that a JSON answer wrapped in a markdown fence is parsed."""
        answer = _sql_answer("SELECT 1 FROM `sessionpulse_core.dim_domain` LIMIT 5")
        mock_openai_class.return_value = _client_returning(f"```json\n{answer}\n```")

        result = generate_sql_from_nl("Anything")

        assert result["sql"] == "SELECT 1 FROM `sessionpulse_core.dim_domain` LIMIT 5"

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_invalid_json_response_raises_error(self, mock_openai_class):
        """Test that invalid JSON response raises SqlGenerationError."""
        mock_openai_class.return_value = _client_returning("This is not valid JSON")

        with pytest.raises(SqlGenerationError, match="invalid JSON"):
            generate_sql_from_nl("Show me data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_missing_sql_field_raises_error(self, mock_openai_class):
        """Test that response missing 'sql' field raises SqlGenerationError."""
        mock_openai_class.return_value = _client_returning(json.dumps({
            "explanation": "This is an explanation without SQL.",
        }))

        with pytest.raises(SqlGenerationError, match="missing 'sql' field"):
            generate_sql_from_nl("Show me data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_missing_explanation_field_raises_error(self, mock_openai_class):
        """Test that response missing 'explanation' field raises SqlGenerationError."""
        mock_openai_class.return_value = _client_returning(json.dumps({
            "sql": "SELECT * FROM table LIMIT 100",
        }))

        with pytest.raises(SqlGenerationError, match="missing 'explanation' field"):
            generate_sql_from_nl("Show me data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_openai_api_error_raises_sql_generation_error(self, mock_openai_class):
        """Test that OpenAI API errors are caught and wrapped."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = OpenAIError("API timeout")
        mock_openai_class.return_value = mock_client

        with pytest.raises(SqlGenerationError, match="API call failed"):
            generate_sql_from_nl("Show me data")

        # Not a transient error, so no retry
        assert mock_client.chat.completions.create.call_count == 1

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_transient_error_is_retried(self, mock_openai_class):
        """Test that a connection error is retried and the next answer used."""
        mock_client = _client_returning(_sql_answer(
            "SELECT * FROM `sessionpulse_core.fact_sessions` LIMIT 10"
        ))
        ok_response = mock_client.chat.completions.create.return_value
        connection_error = APIConnectionError(request=httpx.Request("POST", "https://llm.test"))
        mock_client.chat.completions.create.side_effect = [connection_error, ok_response]
        mock_openai_class.return_value = mock_client

        result = generate_sql_from_nl("Show me sessions")

        assert result["sql"].startswith("SELECT")
        assert mock_client.chat.completions.create.call_count == 2

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_transient_error_gives_up_after_max_retries(self, mock_openai_class):
        """Test that persistent transient errors surface as SqlGenerationError."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = APIConnectionError(
            request=httpx.Request("POST", "https://llm.test")
        )
        mock_openai_class.return_value = mock_client

        with pytest.raises(SqlGenerationError, match="API call failed"):
            generate_sql_from_nl("Show me sessions")

        assert mock_client.chat.completions.create.call_count == 3

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_insert_statement_rejected(self, mock_openai_class):
        """Test that INSERT statements are rejected by safety checks."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "INSERT INTO table VALUES (1, 2, 3)", "This inserts data."
        ))

        with pytest.raises(SqlSafetyError, match="INSERT"):
            generate_sql_from_nl("Insert some data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_update_statement_rejected(self, mock_openai_class):
        """Test that UPDATE statements are rejected by safety checks."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "UPDATE table SET col = 1 WHERE id = 2", "This updates data."
        ))

        with pytest.raises(SqlSafetyError, match="UPDATE"):
            generate_sql_from_nl("Update some data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_delete_statement_rejected(self, mock_openai_class):
        """Test that DELETE statements are rejected by safety checks."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "DELETE FROM table WHERE id = 1", "This deletes data."
        ))

        with pytest.raises(SqlSafetyError, match="DELETE"):
            generate_sql_from_nl("Delete some data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_drop_statement_rejected(self, mock_openai_class):
        """Test that DROP statements are rejected by safety checks."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "DROP TABLE table_name", "This drops a table."
        ))

        with pytest.raises(SqlSafetyError, match="DROP"):
            generate_sql_from_nl("Drop the table")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_cte_query_accepted(self, mock_openai_class):
        """Test that WITH ... SELECT queries pass the safety checks."""
        sql = (
            "WITH recent AS (SELECT * FROM `sessionpulse_core.fact_sessions`) "
            "SELECT COUNT(*) FROM recent LIMIT 1"
        )
        mock_openai_class.return_value = _client_returning(_sql_answer(sql))

        result = generate_sql_from_nl("How many sessions?")

        assert result["sql"] == sql

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_limit_clause_appended_when_missing(self, mock_openai_class):
        """Test that LIMIT clause is appended when missing."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "SELECT * FROM `sessionpulse_core.fact_sessions`;"
        ))

        result = generate_sql_from_nl("Show me all sessions")

        assert result["sql"] == (
            f"SELECT * FROM `sessionpulse_core.fact_sessions` LIMIT {settings.NLQ_MAX_RESULTS}"
        )

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_limit_clause_reduced_when_too_high(self, mock_openai_class):
        """Test that LIMIT clause is reduced when exceeding maximum."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "SELECT * FROM `sessionpulse_core.fact_sessions` LIMIT 10000"
        ))

        result = generate_sql_from_nl("Show me 10000 sessions")

        assert f"LIMIT {settings.NLQ_MAX_RESULTS}" in result["sql"]
        assert "LIMIT 10000" not in result["sql"]

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_non_select_query_rejected(self, mock_openai_class):
        """Test that queries not starting with SELECT are rejected."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "DESCRIBE table_name", "This describes a table."
        ))

        with pytest.raises(SqlSafetyError, match="SELECT"):
            generate_sql_from_nl("Describe the table")

    @patch("sessionpulse.nlq.llm_sql.settings")
    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_llm_disabled_raises_error(self, mock_openai_class, mock_settings):
        """Test that error is raised when LLM is disabled."""
        mock_settings.LLM_ENABLED = False

        with pytest.raises(SqlGenerationError, match="disabled"):
            generate_sql_from_nl("Show me data")

        mock_openai_class.assert_not_called()

    @patch("sessionpulse.nlq.llm_sql.settings")
    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_missing_api_key_raises_error(self, mock_openai_class, mock_settings):
        """Test that error is raised when API key is missing."""
        mock_settings.LLM_ENABLED = True
        mock_settings.FEATHERLESS_API_KEY = ""

        with pytest.raises(SqlGenerationError, match="API key not configured"):
            generate_sql_from_nl("Show me data")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_case_insensitive_keyword_detection(self, mock_openai_class):
        """Test that forbidden keywords are detected case-insensitively."""
        mock_openai_class.return_value = _client_returning(_sql_answer(
            "select * from table where id = 1; update table set col = 2",
            "This is a compound statement.",
        ))

        with pytest.raises(SqlSafetyError, match="UPDATE"):
            generate_sql_from_nl("Do something")

    @patch("sessionpulse.nlq.llm_sql.OpenAI")
    def test_column_names_containing_keywords_allowed(self, mock_openai_class):
        """Test that keywords inside identifiers do not trip the safety check."""
        sql = "SELECT updated_at FROM `sessionpulse_core.fact_sessions` LIMIT 5"
        mock_openai_class.return_value = _client_returning(_sql_answer(sql))

        result = generate_sql_from_nl("When were sessions updated?")

        assert result["sql"] == sql
