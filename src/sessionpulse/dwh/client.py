"""BigQuery Data Warehouse client.

This module reads canonical dimension values for entity resolution and loads
session spreadsheets into the star schema (staging table plus MERGE into the
dimension and fact tables).
"""

import logging
from dataclasses import dataclass
from typing import Any

import pandas as pd
from google.cloud import bigquery

from sessionpulse.core.config import settings
from sessionpulse.resolution.canonical_store import CATEGORY_SCHEMAS
from sessionpulse.resolution.models import Category

logger = logging.getLogger(__name__)

SESSIONS_STAGING_TABLE = "stg_sessions"


@dataclass
class LoadJobResult:
    """Result of BigQuery load job."""

    rows_loaded: int
    table_ref: str


@dataclass
class MergeResult:
    """Result of MERGE operations for one staged load."""

    dimension_rows_inserted: dict[str, int]
    fact_rows_affected: int


# Dimension MERGE statements, keyed by the natural keys the spreadsheet carries
_DIMENSION_MERGES: dict[str, str] = {
    "dim_domain": """
        MERGE `{core}.dim_domain` AS target
        USING (SELECT DISTINCT domain_name FROM `{staging}`) AS source
        ON target.domain_name = source.domain_name
        WHEN NOT MATCHED THEN
            INSERT (domain_id, domain_name)
            VALUES (GENERATE_UUID(), source.domain_name)
    """,
    "dim_topic": """
        MERGE `{core}.dim_topic` AS target
        USING (SELECT DISTINCT topic_code FROM `{staging}`) AS source
        ON target.topic_code = source.topic_code
        WHEN NOT MATCHED THEN
            INSERT (topic_id, topic_code)
            VALUES (GENERATE_UUID(), source.topic_code)
    """,
    "dim_instructor": """
        MERGE `{core}.dim_instructor` AS target
        USING (
            SELECT DISTINCT first_name, last_name, full_name, instructor_region AS region
            FROM `{staging}`
        ) AS source
        ON target.first_name = source.first_name
            AND target.last_name = source.last_name
            AND IFNULL(target.region, '') = IFNULL(source.region, '')
        WHEN NOT MATCHED THEN
            INSERT (instructor_id, first_name, last_name, full_name, region)
            VALUES (GENERATE_UUID(), source.first_name, source.last_name, source.full_name, source.region)
    """,
    "dim_class": """
        MERGE `{core}.dim_class` AS target
        USING (SELECT DISTINCT class_name, class_region AS region FROM `{staging}`) AS source
        ON target.class_name = source.class_name
            AND IFNULL(target.region, '') = IFNULL(source.region, '')
        WHEN NOT MATCHED THEN
            INSERT (class_id, class_name, region)
            VALUES (GENERATE_UUID(), source.class_name, source.region)
    """,
}

_FACT_MERGE = """
    MERGE `{core}.fact_sessions` AS target
    USING (
        SELECT
            di.instructor_id, dc.class_id, dd.domain_id, dt.topic_id,
            CAST(s.pst_date AS DATE) AS pst_date,
            s.average_rating, s.responses, s.attended, s.rated_pct
        FROM `{staging}` s
        JOIN `{core}.dim_instructor` di
            ON di.first_name = s.first_name AND di.last_name = s.last_name
            AND IFNULL(di.region, '') = IFNULL(s.instructor_region, '')
        JOIN `{core}.dim_class` dc
            ON dc.class_name = s.class_name AND IFNULL(dc.region, '') = IFNULL(s.class_region, '')
        JOIN `{core}.dim_domain` dd ON dd.domain_name = s.domain_name
        JOIN `{core}.dim_topic` dt ON dt.topic_code = s.topic_code
    ) AS source
    ON target.instructor_id = source.instructor_id
        AND target.class_id = source.class_id
        AND target.pst_date = source.pst_date
        AND target.topic_id = source.topic_id
    WHEN MATCHED THEN
        UPDATE SET
            average_rating = source.average_rating,
            responses = source.responses,
            attended = source.attended,
            rated_pct = source.rated_pct
    WHEN NOT MATCHED THEN
        INSERT (session_id, instructor_id, class_id, domain_id, topic_id, pst_date,
                average_rating, responses, attended, rated_pct)
        VALUES (GENERATE_UUID(), source.instructor_id, source.class_id, source.domain_id,
                source.topic_id, source.pst_date, source.average_rating, source.responses,
                source.attended, source.rated_pct)
"""


class DwhClient:
    """BigQuery Data Warehouse client."""

    def __init__(self):
        """Initialize BigQuery client."""
        self.project_id = settings.bigquery_project
        self.dataset_id = settings.BIGQUERY_DATASET_ID
        self.staging_dataset_id = settings.bigquery_staging_dataset

        # Initialize client - if project_id is empty, let it auto-detect
        self.client = bigquery.Client(project=self.project_id if self.project_id else None)

        if not self.project_id:
            try:
                self.project_id = self.client.project
                logger.info(f"Auto-detected BigQuery project: {self.project_id}")
            except Exception as e:
                logger.error(f"Failed to auto-detect BigQuery project: {e}")
                raise ValueError(
                    "BigQuery project ID is required. Set GCP_PROJECT_ID environment variable."
                )

        logger.info(
            f"Initialized DwhClient: project={self.project_id}, "
            f"dataset={self.dataset_id}, staging={self.staging_dataset_id}"
        )

    @property
    def core_ref(self) -> str:
        return f"{self.project_id}.{self.dataset_id}"

    @property
    def staging_ref(self) -> str:
        return f"{self.project_id}.{self.staging_dataset_id}"

    def list_canonical_values(self, category: Category) -> list[dict[str, Any]]:
        """Read the canonical rows of one category's dimension table.

        Args:
            category: Category to read

        Returns:
            Rows as dicts, ordered by the primary column
        """
        schema = CATEGORY_SCHEMAS[category]
        columns = ", ".join(schema.columns)
        query = (
            f"SELECT DISTINCT {columns} FROM `{self.core_ref}.{schema.table}` "
            f"ORDER BY {schema.primary_column} ASC"
        )

        rows = self.client.query(query).result()
        values = [dict(row.items()) for row in rows]

        logger.debug(f"Read {len(values)} rows from {schema.table}")
        return values

    def list_dimension_values(self, category: Category) -> list[str]:
        """Sorted canonical values of one category."""
        primary = CATEGORY_SCHEMAS[category].primary_column
        values = [row[primary] for row in self.list_canonical_values(category) if row.get(primary)]
        return list(dict.fromkeys(values))

    def stage_dataframe(self, df: pd.DataFrame, table_name: str = SESSIONS_STAGING_TABLE) -> LoadJobResult:
        """Replace a staging table with the contents of a DataFrame.

        Args:
            df: Normalized rows
            table_name: Staging table name

        Returns:
            LoadJobResult with job statistics
        """
        table_ref = f"{self.staging_ref}.{table_name}"
        logger.info(f"Loading {len(df)} rows to staging: {table_ref}")

        job_config = bigquery.LoadJobConfig(
            write_disposition=bigquery.WriteDisposition.WRITE_TRUNCATE,
        )
        load_job = self.client.load_table_from_dataframe(df, table_ref, job_config=job_config)
        load_job.result()

        rows_loaded = load_job.output_rows or 0
        logger.info(f"Load job completed: rows={rows_loaded}")

        return LoadJobResult(rows_loaded=rows_loaded, table_ref=table_ref)

    def merge_sessions(self, table_name: str = SESSIONS_STAGING_TABLE) -> MergeResult:
        """MERGE staged session rows into dimensions, then into fact_sessions.

        Args:
            table_name: Staging table holding normalized session rows

        Returns:
            MergeResult with merge statistics
        """
        staging = f"{self.staging_ref}.{table_name}"
        inserted: dict[str, int] = {}

        for dimension, template in _DIMENSION_MERGES.items():
            query_job = self.client.query(template.format(core=self.core_ref, staging=staging))
            query_job.result()
            inserted[dimension] = query_job.num_dml_affected_rows or 0
            logger.info(f"Merged {dimension}: rows_inserted={inserted[dimension]}")

        query_job = self.client.query(_FACT_MERGE.format(core=self.core_ref, staging=staging))
        query_job.result()
        fact_rows = query_job.num_dml_affected_rows or 0

        logger.info(f"Merged fact_sessions: rows_affected={fact_rows}")

        return MergeResult(dimension_rows_inserted=inserted, fact_rows_affected=fact_rows)
