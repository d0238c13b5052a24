"""BigQuery query execution engine for NLQ.

This module executes validated SQL queries against the session ratings
warehouse and returns results as JSON-friendly rows.
"""

import logging
import time
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from google.cloud import bigquery
from google.cloud.exceptions import GoogleCloudError

from sessionpulse.core.config import settings

logger = logging.getLogger(__name__)


class QueryExecutionError(Exception):
    """Raised when BigQuery query execution fails."""

    pass


# Global BigQuery client (singleton pattern for connection pooling)
_bq_client: bigquery.Client | None = None


def get_bigquery_client() -> bigquery.Client:
    """Get or create BigQuery client singleton.

    Returns:
        BigQuery Client instance
    """
    global _bq_client

    if _bq_client is None:
        project_id = settings.GCP_PROJECT_ID
        if not project_id:
            # Let BigQuery client auto-detect project
            _bq_client = bigquery.Client()
            logger.info("Initialized BigQuery client with auto-detected project")
        else:
            _bq_client = bigquery.Client(project=project_id)
            logger.info(f"Initialized BigQuery client for project: {project_id}")

    return _bq_client


def run_analytics_query(
    sql: str,
    correlation_id: str | None = None,
) -> list[dict[str, Any]]:
    """Execute validated SQL query against BigQuery.

    Args:
        sql: Validated SQL query (should already be checked for safety)
        correlation_id: Optional correlation ID for logging

    Returns:
        List of result rows as dictionaries, at most NLQ_MAX_RESULTS

    Raises:
        QueryExecutionError: If query execution fails
    """
    log_extra = {"correlation_id": correlation_id} if correlation_id else {}

    logger.info("Executing BigQuery analytics query", extra={**log_extra, "sql": sql})

    # Get BigQuery client
    try:
        client = get_bigquery_client()
    except Exception as e:
        logger.error(f"Failed to initialize BigQuery client: {e}", extra=log_extra)
        raise QueryExecutionError(f"Database connection failed: {e}")

    # Configure query job
    job_config = bigquery.QueryJobConfig(use_legacy_sql=False)

    # Cost control
    if settings.BQ_MAX_BYTES_BILLED:
        job_config.maximum_bytes_billed = settings.BQ_MAX_BYTES_BILLED

    start_time = time.time()

    # Execute query
    try:
        query_job = client.query(sql, job_config=job_config)
        # Wait for query to complete with timeout
        result = query_job.result(timeout=settings.NLQ_QUERY_TIMEOUT_SECONDS)
    except GoogleCloudError as e:
        logger.error(
            "BigQuery query failed",
            extra={
                **log_extra,
                "error": str(e),
                "execution_time_seconds": round(time.time() - start_time, 2),
            },
        )
        raise QueryExecutionError(_sanitize_bigquery_error(e))
    except Exception as e:
        logger.error(
            "Unexpected error executing BigQuery query",
            extra={
                **log_extra,
                "error": str(e),
                "execution_time_seconds": round(time.time() - start_time, 2),
            },
        )
        raise QueryExecutionError(f"Query execution failed: {e}")

    # Log query metadata
    logger.info(
        "BigQuery query completed",
        extra={
            **log_extra,
            "execution_time_seconds": round(time.time() - start_time, 2),
            "bytes_processed": query_job.total_bytes_processed or 0,
            "cache_hit": query_job.cache_hit or False,
            "num_rows": result.total_rows or 0,
        },
    )

    # Convert rows to list of dicts
    try:
        max_results = settings.NLQ_MAX_RESULTS
        rows = []
        for row in result:
            # Enforce maximum results limit
            if len(rows) >= max_results:
                logger.warning(
                    f"Query returned more than {max_results} rows, truncating",
                    extra=log_extra,
                )
                break
            rows.append({key: _to_json_value(value) for key, value in row.items()})
    except Exception as e:
        logger.error(
            "Failed to convert BigQuery results to dict",
            extra={**log_extra, "error": str(e)},
        )
        raise QueryExecutionError(f"Failed to process query results: {e}")

    logger.info(f"Retrieved {len(rows)} rows from BigQuery", extra=log_extra)
    return rows


def _to_json_value(value: Any) -> Any:
    """Convert NUMERIC and DATE cells into JSON-native values."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _sanitize_bigquery_error(error: Exception) -> str:
    """Convert BigQuery error to user-friendly message.

    Args:
        error: Exception from BigQuery

    Returns:
        Sanitized error message suitable for end users
    """
    error_str = str(error).lower()

    # Map common error patterns to user-friendly messages
    if "not found" in error_str:
        if "table" in error_str or "dataset" in error_str:
            return "Table or dataset not found. The query may reference a non-existent table."
        return "The requested resource was not found."

    if "permission" in error_str or "denied" in error_str or "access" in error_str:
        return "Permission denied. You may not have access to the requested data."

    if "bytes" in error_str and "billed" in error_str:
        return "Query would process too much data. Try adding filters or limiting the date range."

    if "timeout" in error_str or "exceeded" in error_str:
        if "quota" in error_str or "limit" in error_str:
            return "Query exceeded resource limits. Try reducing the amount of data processed."
        return "Query took too long to execute. Try simplifying your query or adding filters."

    if "syntax" in error_str or "invalid" in error_str or "unrecognized name" in error_str:
        return "Invalid SQL syntax. The generated query may have errors."

    # Default generic message
    return "Query execution failed. Please try rephrasing your question or simplifying the query."
