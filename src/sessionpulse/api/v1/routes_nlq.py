"""Natural Language Query (NLQ) API routes.

This module provides the REST endpoint that resolves entity terms in a
question, generates SQL with the resolved context and executes it against
BigQuery.
"""

import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from sessionpulse.core.config import settings
from sessionpulse.core.logging import correlation_id_context
from sessionpulse.nlq.bq_query_engine import QueryExecutionError, run_analytics_query
from sessionpulse.nlq.llm_sql import SqlGenerationError, SqlSafetyError, generate_sql_from_nl
from sessionpulse.nlq.term_extractor import extract_terms
from sessionpulse.resolution.context_builder import build_context, format_context_block
from sessionpulse.resolution.models import ResolvedTerm
from sessionpulse.resolution.service import ResolutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/nlq")


class QueryRequest(BaseModel):
    """Request body for query endpoint."""

    query: str = Field(..., description="Natural language question")


class CandidateOut(BaseModel):
    """One canonical value a term resolved to."""

    category: str
    value: str
    score: float


class TermResolution(BaseModel):
    """Resolution outcome of one extracted term."""

    term: str
    status: str = Field(..., description="'resolved', 'ambiguous' or 'unresolved'")
    candidates: list[CandidateOut] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """Response body for query endpoint."""

    query: str
    sql: str | None = Field(None, description="Generated SQL query (if successful)")
    explanation: str | None = Field(None, description="Explanation of the query")
    rows: list[dict[str, Any]] | None = Field(
        None, description="Query result rows (limited to NLQ_DISPLAY_ROWS for display)"
    )
    total_rows: int | None = Field(None, description="Total number of rows returned")
    context: list[str] = Field(default_factory=list, description="Entity filter directives")
    resolutions: list[TermResolution] = Field(default_factory=list)
    error: str | None = Field(None, description="Error message if query failed")


def get_resolution_service(request: Request) -> ResolutionService:
    """Resolution service created at application start-up."""
    return request.app.state.resolution_service


def _resolution_out(term: str, resolved: ResolvedTerm) -> TermResolution:
    return TermResolution(
        term=term,
        status=resolved.status,
        candidates=[
            CandidateOut(category=c.category.value, value=c.value, score=c.score)
            for c in resolved.candidates
        ],
    )


@router.post("/query", response_model=QueryResponse)
def query(
    request: QueryRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> QueryResponse:
    """Answer a natural language question about session ratings.

    Steps: extract terms, resolve each against the entity indexes, build the
    context block, generate SQL, execute it.

    Raises:
        HTTPException: 400 for a blank question, 503 if the feature is
            disabled, 500 for unexpected errors
    """
    correlation_id = str(uuid4())
    token = correlation_id_context.set(correlation_id)
    log_extra = {"correlation_id": correlation_id}

    try:
        if not settings.LLM_ENABLED:
            logger.warning("NLQ feature disabled", extra=log_extra)
            raise HTTPException(
                status_code=503,
                detail="Natural language query feature is currently disabled",
            )

        user_query = request.query.strip()
        if not user_query:
            raise HTTPException(status_code=400, detail="Query required")

        logger.info("Processing user query", extra={**log_extra, "user_query": user_query})

        # Resolution only narrows the query; it never fails the request
        terms = extract_terms(user_query, correlation_id=correlation_id)
        resolutions = service.resolve_terms(terms)
        directives = build_context(resolutions)
        context_block = format_context_block(directives)

        response = QueryResponse(
            query=user_query,
            context=directives,
            resolutions=[_resolution_out(term, resolved) for term, resolved in resolutions],
        )

        try:
            sql_result = generate_sql_from_nl(
                user_query=user_query,
                context_block=context_block,
                correlation_id=correlation_id,
            )
            response.sql = sql_result["sql"]
            response.explanation = sql_result["explanation"]

            rows = run_analytics_query(sql=response.sql, correlation_id=correlation_id)
            response.total_rows = len(rows)
            response.rows = rows[: settings.NLQ_DISPLAY_ROWS]

            logger.info(
                "Query executed successfully",
                extra={**log_extra, "total_rows": response.total_rows},
            )

        except SqlSafetyError as e:
            logger.error("SQL safety validation failed", extra={**log_extra, "error": str(e)})
            response.error = f"Safety check failed: {e}"

        except SqlGenerationError as e:
            logger.error("SQL generation failed", extra={**log_extra, "error": str(e)})
            response.error = f"Failed to generate SQL: {e}"

        except QueryExecutionError as e:
            logger.error(
                "BigQuery query execution failed",
                extra={**log_extra, "error": str(e), "sql": response.sql},
            )
            response.error = f"Query execution failed: {e}"

        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error in query endpoint",
            extra={**log_extra, "error": str(e)},
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=f"Internal server error: {e}")
    finally:
        correlation_id_context.reset(token)
