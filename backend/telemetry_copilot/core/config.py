"""
Centralized application configuration – loaded from environment variables.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All env-driven configuration in one place."""

    # ── App ───────────────────────────────────────────────────────
    APP_NAME: str = "Telemetry Copilot"
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # ── CORS ──────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:5173"

    # ── LLM ──────────────────────────────────────────────────────
    LLM_PROVIDER: str = "openai"  # "openai" or "azure"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_API_VERSION: str = "2024-06-01"
    AZURE_OPENAI_DEPLOYMENT: str = ""

    # ── Data source ──────────────────────────────────────────────
    DATA_SOURCE: str = "appinsights"  # "appinsights" or "postgres"
    APPINSIGHTS_APP_ID: str = ""
    APPINSIGHTS_API_KEY: str = ""
    APPINSIGHTS_ENDPOINT: str = "https://api.applicationinsights.io/v1"
    DATABASE_URL: str = "postgresql://telemetry:telemetry@db:5432/telemetry"
    QUERY_MAX_ROWS: int = 1000
    DATA_SOURCE_TIMEOUT_S: float = 60.0

    # ── Refinement policy ────────────────────────────────────────
    CONFIDENCE_THRESHOLD: float = 0.7
    MAX_REGENERATION_ATTEMPTS: int = 3
    ALLOW_EDITING: bool = True
    HISTORY_MAX_ENTRIES: int = 50
    SESSION_MAX_AGE_MINUTES: int = 24 * 60

    # ── Explanations ─────────────────────────────────────────────
    EXPLAIN_LANGUAGE: str = "en"
    EXPLAIN_TECHNICAL_LEVEL: str = "intermediate"
    EXPLAIN_INCLUDE_EXAMPLES: bool = True

    # ── Analysis policy ──────────────────────────────────────────
    OUTLIER_STDDEV_MULTIPLIER: float = 2.0
    GAP_INTERVAL_MULTIPLIER: float = 3.0
    TREND_CHANGE_THRESHOLD: float = 0.1
    ANALYSIS_SAMPLE_ROWS: int = 5

    # ── Langfuse Observability ─────────────────────────────────
    LANGFUSE_ENABLED: bool = False
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LANGFUSE_HOST: str = "https://cloud.langfuse.com"

    # ── Helpers ───────────────────────────────────────────────────
    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def query_dialect(self) -> str:
        """KQL for Application Insights, SQL for the Postgres store."""
        return "sql" if self.DATA_SOURCE.lower() == "postgres" else "kql"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
