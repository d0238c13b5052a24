"""Natural Language Query (NLQ) module for BigQuery analytics.

This module provides natural language to SQL translation capabilities,
enabling users to query session ratings using plain English questions.
"""

from sessionpulse.nlq.schema_context import load_schema_context, get_system_prompt
from sessionpulse.nlq.llm_sql import generate_sql_from_nl, SqlGenerationError, SqlSafetyError
from sessionpulse.nlq.bq_query_engine import run_analytics_query, QueryExecutionError
from sessionpulse.nlq.term_extractor import extract_terms

__all__ = [
    "load_schema_context",
    "get_system_prompt",
    "generate_sql_from_nl",
    "SqlGenerationError",
    "SqlSafetyError",
    "run_analytics_query",
    "QueryExecutionError",
    "extract_terms",
]
