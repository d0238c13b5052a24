"""Schema context module for NLQ.

This module defines the BigQuery star schema of session ratings and generates
the system prompt the LLM uses to translate natural language to SQL.
"""

import logging
from dataclasses import dataclass

from sessionpulse.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ColumnSchema:
    """Schema definition for a single column."""

    name: str
    type: str
    description: str
    mode: str = "NULLABLE"


@dataclass
class TableSchema:
    """Schema definition for a BigQuery table."""

    name: str
    alias: str
    description: str
    columns: list[ColumnSchema]


@dataclass
class SchemaContext:
    """Complete schema context for BigQuery dataset."""

    dataset_id: str
    tables: list[TableSchema]
    system_prompt: str


def load_schema_context() -> SchemaContext:
    """Load the star schema context for the configured dataset.

    Returns:
        SchemaContext with all tables and columns defined
    """
    dataset_id = settings.BIGQUERY_DATASET_ID

    dim_instructor = TableSchema(
        name="dim_instructor",
        alias="di",
        description="Instructor dimension. One row per instructor and region.",
        columns=[
            ColumnSchema("instructor_id", "STRING", "Unique instructor identifier", "REQUIRED"),
            ColumnSchema("first_name", "STRING", "Given name, e.g. 'Udit'", "REQUIRED"),
            ColumnSchema("last_name", "STRING", "Family name, e.g. 'Bhatia'", "REQUIRED"),
            ColumnSchema("full_name", "STRING", "first_name and last_name joined by a space"),
            ColumnSchema("region", "STRING", "Instructor region, e.g. 'India' or 'US'"),
        ],
    )

    dim_class = TableSchema(
        name="dim_class",
        alias="dc",
        description="Class dimension. One row per class title and region.",
        columns=[
            ColumnSchema("class_id", "STRING", "Unique class identifier", "REQUIRED"),
            ColumnSchema("class_name", "STRING", "Class title, e.g. 'Product Management Behavioral'", "REQUIRED"),
            ColumnSchema("region", "STRING", "Class region, e.g. 'US' or 'India'"),
        ],
    )

    dim_domain = TableSchema(
        name="dim_domain",
        alias="dd",
        description="Domain dimension. Tracks/programs such as 'Backend' or 'Data Science'.",
        columns=[
            ColumnSchema("domain_id", "STRING", "Unique domain identifier", "REQUIRED"),
            ColumnSchema("domain_name", "STRING", "Domain name", "REQUIRED"),
        ],
    )

    dim_topic = TableSchema(
        name="dim_topic",
        alias="dt",
        description="Topic dimension. Session format such as 'Live Class' or 'Test Review Session'.",
        columns=[
            ColumnSchema("topic_id", "STRING", "Unique topic identifier", "REQUIRED"),
            ColumnSchema("topic_code", "STRING", "Session format/type", "REQUIRED"),
        ],
    )

    fact_sessions = TableSchema(
        name="fact_sessions",
        alias="fs",
        description="Session fact table. One row per instructor, class, topic and date with rating metrics.",
        columns=[
            ColumnSchema("session_id", "STRING", "Unique session identifier", "REQUIRED"),
            ColumnSchema("instructor_id", "STRING", "Foreign key to dim_instructor"),
            ColumnSchema("class_id", "STRING", "Foreign key to dim_class"),
            ColumnSchema("domain_id", "STRING", "Foreign key to dim_domain"),
            ColumnSchema("topic_id", "STRING", "Foreign key to dim_topic"),
            ColumnSchema("pst_date", "DATE", "Session date in America/Los_Angeles", "REQUIRED"),
            ColumnSchema("average_rating", "NUMERIC", "Average rating, 1.00 to 5.00"),
            ColumnSchema("responses", "INTEGER", "Number of ratings received"),
            ColumnSchema("attended", "INTEGER", "Number of students attended"),
            ColumnSchema("rated_pct", "NUMERIC", "Percentage of attendees who rated, 0 to 100"),
        ],
    )

    tables = [fact_sessions, dim_instructor, dim_class, dim_domain, dim_topic]

    system_prompt = _build_system_prompt(dataset_id, tables)

    logger.info(f"Loaded schema context for dataset: {dataset_id}")

    return SchemaContext(
        dataset_id=dataset_id,
        tables=tables,
        system_prompt=system_prompt,
    )


def _build_system_prompt(dataset_id: str, tables: list[TableSchema]) -> str:
    """Build system prompt from dataset ID and tables.

    Args:
        dataset_id: BigQuery dataset ID
        tables: List of table schemas

    Returns:
        System prompt string with schema context and instructions
    """
    schema_doc = []
    for table in tables:
        columns_doc = "Columns:"
        for col in table.columns:
            columns_doc += f"\n  - {col.name} ({col.type}, {col.mode}): {col.description}"

        schema_doc.append(
            "\n".join(
                [
                    f"\n### Table: {dataset_id}.{table.name} (alias {table.alias})",
                    f"Description: {table.description}",
                    columns_doc,
                ]
            )
        )

    schema_str = "\n".join(schema_doc)

    joins = f"""FROM `{dataset_id}.fact_sessions` fs
JOIN `{dataset_id}.dim_instructor` di ON fs.instructor_id = di.instructor_id
JOIN `{dataset_id}.dim_class` dc ON fs.class_id = dc.class_id
JOIN `{dataset_id}.dim_domain` dd ON fs.domain_id = dd.domain_id
JOIN `{dataset_id}.dim_topic` dt ON fs.topic_id = dt.topic_id"""

    few_shot_examples = f"""
## Example Queries

Example 1:
User: "What is the weighted average for live classes?"
Response:
{{
  "sql": "SELECT ROUND(SUM(fs.average_rating * fs.responses) / NULLIF(SUM(fs.responses), 0), 2) AS weighted_avg FROM `{dataset_id}.fact_sessions` fs JOIN `{dataset_id}.dim_topic` dt ON fs.topic_id = dt.topic_id WHERE LOWER(dt.topic_code) LIKE '%live class%' LIMIT 100",
  "explanation": "Weighted average rating over all live class sessions, weighting each session by its number of responses."
}}

Example 2:
User: "Month-over-month rating trend for Backend"
Response:
{{
  "sql": "WITH monthly AS (SELECT EXTRACT(YEAR FROM fs.pst_date) AS pst_year, EXTRACT(MONTH FROM fs.pst_date) AS pst_month, ROUND(AVG(fs.average_rating), 2) AS avg_rating FROM `{dataset_id}.fact_sessions` fs JOIN `{dataset_id}.dim_domain` dd ON fs.domain_id = dd.domain_id WHERE dd.domain_name = 'Backend' GROUP BY pst_year, pst_month) SELECT pst_year, pst_month, avg_rating, ROUND(avg_rating - LAG(avg_rating) OVER (ORDER BY pst_year, pst_month), 2) AS change FROM monthly ORDER BY pst_year, pst_month LIMIT 100",
  "explanation": "Average rating per month for the Backend domain with the change from the previous month."
}}

Example 3:
User: "Instructors teaching in more than one domain in 2025"
Response:
{{
  "sql": "SELECT di.full_name, COUNT(DISTINCT dd.domain_name) AS domains, ROUND(AVG(fs.average_rating), 2) AS avg_rating FROM `{dataset_id}.fact_sessions` fs JOIN `{dataset_id}.dim_instructor` di ON fs.instructor_id = di.instructor_id JOIN `{dataset_id}.dim_domain` dd ON fs.domain_id = dd.domain_id WHERE EXTRACT(YEAR FROM fs.pst_date) = 2025 GROUP BY di.full_name HAVING COUNT(DISTINCT dd.domain_name) > 1 ORDER BY avg_rating DESC LIMIT 100",
  "explanation": "Instructors with sessions in at least two domains during 2025, with their average rating."
}}
"""

    return f"""You are an expert SQL query generator for BigQuery. Your task is to translate natural language questions into safe, read-only SQL queries against the SessionPulse session ratings database.

## Database Schema

Dataset: {dataset_id}
{schema_str}

Standard joins (use these aliases):
{joins}

## Important Rules

1. **Output Format**: ALWAYS respond with valid JSON containing "sql" and "explanation" fields:
   {{"sql": "SELECT ...", "explanation": "This query..."}}

2. **Dataset Prefix**: ALWAYS use fully-qualified table names with dataset prefix: `{dataset_id}.table_name`

3. **SQL Safety**:
   - Only generate SELECT queries (read-only)
   - NEVER use INSERT, UPDATE, DELETE, DROP, ALTER, CREATE, TRUNCATE, MERGE, GRANT, REVOKE

4. **Query Limits**: Always include a LIMIT clause (default: LIMIT 100)

5. **Metrics**:
   - Simple averages: ROUND(AVG(fs.average_rating), 2)
   - Weighted averages: ROUND(SUM(fs.average_rating * fs.responses) / NULLIF(SUM(fs.responses), 0), 2)
   - Trends: use LAG() window functions; period comparisons: CASE expressions

6. **Dates**: pst_date is already in Pacific time. Only filter by year, quarter or month when the user explicitly mentions one; otherwise aggregate across all dates.

7. **Entity Filters**:
   - When a SYSTEM CONTEXT block follows the question, apply its filters exactly as stated
   - For ambiguous terms listed there, match ANY of the listed values
   - Without context, use case-insensitive partial matches, e.g. LOWER(dd.domain_name) LIKE '%data science%'

{few_shot_examples}

## Your Task

Translate the user's natural language question into a safe BigQuery SQL query following all the rules above. Return ONLY the JSON response with "sql" and "explanation" fields.
"""


# Module-level cache for schema context
_schema_context_cache: SchemaContext | None = None


def get_cached_schema_context() -> SchemaContext:
    """Get cached schema context or load if not cached.

    Returns:
        Cached SchemaContext instance
    """
    global _schema_context_cache

    if _schema_context_cache is None:
        _schema_context_cache = load_schema_context()

    return _schema_context_cache


def get_system_prompt() -> str:
    """Get system prompt for LLM SQL generation.

    Returns:
        System prompt string with schema context and instructions
    """
    return get_cached_schema_context().system_prompt
