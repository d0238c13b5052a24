"""Session spreadsheet ingestion.

This module reads the session ratings workbook, normalizes it into one row per
instructor/class/topic/date and loads it into the BigQuery star schema.
Re-loading the same workbook updates metrics in place.
"""

import argparse
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from sessionpulse.core.config import settings
from sessionpulse.core.logging import setup_logging
from sessionpulse.dwh.client import DwhClient

logger = logging.getLogger(__name__)

# Workbook header -> staging column
SESSION_COLUMNS = {
    "Topic Code": "topic_code",
    "Domain": "domain_name",
    "Class": "class_name",
    "Class Region": "class_region",
    "First Name": "first_name",
    "Last Name": "last_name",
    "Instructor Region": "instructor_region",
    "Session Date": "pst_date",
    "Average": "average_rating",
    "responses": "responses",
    "No of Students Attended": "attended",
    "% Rated": "rated_pct",
}

TEXT_COLUMNS = [
    "topic_code",
    "domain_name",
    "class_name",
    "class_region",
    "first_name",
    "last_name",
    "instructor_region",
]

# One fact row per instructor, class, topic and date
SESSION_KEY = [
    "first_name",
    "last_name",
    "instructor_region",
    "class_name",
    "class_region",
    "topic_code",
    "pst_date",
]

# Day zero of Excel's 1900 date system, as used for serial date numbers
EXCEL_EPOCH = "1899-12-30"


@dataclass
class LoadSummary:
    """Outcome of one workbook load."""

    rows_read: int
    rows_loaded: int
    rows_skipped: int
    fact_rows_affected: int


def read_sessions_workbook(path: str | Path) -> pd.DataFrame:
    """Read the first sheet of the sessions workbook.

    Raises:
        FileNotFoundError: If the workbook does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    df = pd.read_excel(path, sheet_name=0)
    logger.info(f"Read {len(df)} rows from {path}")
    return df


def normalize_session_date(value: Any) -> str | None:
    """Convert a workbook date cell to YYYY-MM-DD.

    Handles Excel serial numbers, datetime cells and date strings. Returns
    None for empty or unparseable cells.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None

    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")

    if pd.api.types.is_number(value):
        parsed = pd.to_datetime(value, unit="D", origin=EXCEL_EPOCH)
    else:
        text = str(value).strip()
        if not text:
            return None
        parsed = pd.to_datetime(text, errors="coerce")

    if pd.isna(parsed):
        return None
    return parsed.strftime("%Y-%m-%d")


def _normalize_rated_pct(value: float) -> float:
    """Scale fractional ratios (0.5) to percentages (50)."""
    if 0 < value <= 1:
        return value * 100
    return value


def normalize_sessions(df_raw: pd.DataFrame) -> pd.DataFrame:
    """Normalize raw workbook rows into staging rows.

    Args:
        df_raw: Workbook rows with original headers

    Returns:
        DataFrame with SESSION_COLUMNS values as columns plus full_name;
        rows without a first name or a valid session date are dropped and
        duplicate sessions keep the last row
    """
    df = df_raw.rename(columns=SESSION_COLUMNS)

    for column in SESSION_COLUMNS.values():
        if column not in df.columns:
            df[column] = None

    df = df[list(SESSION_COLUMNS.values())].copy()

    for column in TEXT_COLUMNS:
        df[column] = df[column].fillna("").astype(str).str.strip()

    df["pst_date"] = df["pst_date"].apply(normalize_session_date)

    before = len(df)
    df = df[(df["first_name"] != "") & df["pst_date"].notna()].copy()
    skipped = before - len(df)
    if skipped:
        logger.warning(f"Skipped {skipped} rows without first name or session date")

    for column in ["average_rating", "rated_pct"]:
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0.0).astype(float)
    for column in ["responses", "attended"]:
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0).astype(int)

    df["rated_pct"] = df["rated_pct"].apply(_normalize_rated_pct)
    df["full_name"] = (df["first_name"] + " " + df["last_name"]).str.strip()

    df = df.drop_duplicates(subset=SESSION_KEY, keep="last").reset_index(drop=True)

    logger.info(f"Normalized {len(df)} session rows")
    return df


def load_sessions(df_raw: pd.DataFrame, client: DwhClient) -> LoadSummary:
    """Normalize workbook rows and load them into the warehouse.

    Args:
        df_raw: Workbook rows with original headers
        client: Warehouse client

    Returns:
        LoadSummary with row statistics
    """
    df = normalize_sessions(df_raw)

    if df.empty:
        logger.warning("No valid session rows to load")
        return LoadSummary(rows_read=len(df_raw), rows_loaded=0, rows_skipped=len(df_raw), fact_rows_affected=0)

    load_result = client.stage_dataframe(df)
    merge_result = client.merge_sessions()

    summary = LoadSummary(
        rows_read=len(df_raw),
        rows_loaded=load_result.rows_loaded,
        rows_skipped=len(df_raw) - len(df),
        fact_rows_affected=merge_result.fact_rows_affected,
    )
    logger.info(
        "Session load complete",
        extra={
            "rows_read": summary.rows_read,
            "rows_loaded": summary.rows_loaded,
            "rows_skipped": summary.rows_skipped,
            "fact_rows_affected": summary.fact_rows_affected,
        },
    )
    return summary


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point: load a sessions workbook into BigQuery."""
    parser = argparse.ArgumentParser(description="Load a session ratings workbook into BigQuery")
    parser.add_argument(
        "--file",
        default=settings.SESSIONS_WORKBOOK_PATH,
        help=f"Path to the .xlsx workbook (default: {settings.SESSIONS_WORKBOOK_PATH})",
    )
    args = parser.parse_args(argv)

    setup_logging()

    df_raw = read_sessions_workbook(args.file)
    summary = load_sessions(df_raw, DwhClient())

    print(
        f"Loaded {summary.rows_loaded} of {summary.rows_read} rows "
        f"({summary.rows_skipped} skipped, {summary.fact_rows_affected} sessions merged)"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
