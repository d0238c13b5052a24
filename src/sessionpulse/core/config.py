"""Configuration management for SessionPulse Engine."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "sessionpulse-engine"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # GCP Configuration
    GCP_PROJECT_ID: str = ""

    # BigQuery Warehouse Configuration
    BIGQUERY_DATASET_ID: str = "sessionpulse_core"
    BIGQUERY_STAGING_DATASET_ID: str = ""  # Defaults to BIGQUERY_DATASET_ID

    # LLM via Featherless.ai (OpenAI-compatible endpoint)
    FEATHERLESS_API_KEY: str = ""
    FEATHERLESS_BASE_URL: str = "https://api.featherless.ai/v1"
    FEATHERLESS_LLM_MODEL: str = "meta-llama/Meta-Llama-3.1-8B-Instruct"
    LLM_ENABLED: bool = True
    LLM_MAX_RETRIES: int = 3  # Attempts for transient LLM failures
    LLM_RETRY_BACKOFF_SECONDS: float = 2.0

    # Natural Language Query (NLQ) Configuration
    NLQ_MAX_RESULTS: int = 100  # Maximum rows returned by NLQ queries
    NLQ_DISPLAY_ROWS: int = 20  # Rows echoed back in the API response
    NLQ_QUERY_TIMEOUT_SECONDS: int = 60  # Timeout for BigQuery queries
    BQ_MAX_BYTES_BILLED: int | None = None  # Optional limit on BigQuery bytes billed

    # Entity Resolution Policy
    ENTITY_SCORE_FLOOR: float = 0.4  # Candidates scoring at or above are discarded
    ENTITY_AMBIGUITY_MARGIN: float = 0.05  # Absolute window above the best score
    ENTITY_MAX_CANDIDATES: int = 5
    FUZZY_FIELD_THRESHOLD: float = 0.4  # Per-field match cut-off inside the index
    FUZZY_LOCATION_DISTANCE: int = 100  # Characters over which match offset costs 1.0

    # Entity Index Lifecycle
    ENTITY_WARMUP_ENABLED: bool = True
    ENTITY_REFRESH_INTERVAL_SECONDS: float = 0  # 0 disables periodic refresh

    # Ingestion Configuration
    SESSIONS_WORKBOOK_PATH: str = "data/sessions.xlsx"

    @property
    def bigquery_project(self) -> str:
        """Get BigQuery project ID from GCP_PROJECT_ID."""
        return self.GCP_PROJECT_ID

    @property
    def bigquery_staging_dataset(self) -> str:
        """Get staging dataset, defaulting to main dataset."""
        return self.BIGQUERY_STAGING_DATASET_ID or self.BIGQUERY_DATASET_ID


# Singleton settings instance
settings = Settings()
