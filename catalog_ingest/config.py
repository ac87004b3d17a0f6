"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """Raised when mandatory configuration or reference data is unusable."""

    pass


class Settings(BaseSettings):
    """Application settings."""

    # Database (mandatory)
    database_url: str = ""

    # Redis (LLM response cache only)
    redis_url: str = "redis://localhost:6379/0"

    # App Settings
    log_level: str = "INFO"
    log_dir: str = ""

    # ==========================================================================
    # Reference data & sources
    # ==========================================================================
    manifest_path: str = "manifest.json"
    urdf_folder: str = "./URDF"
    pdf_folder: str = "./PDF"

    # ==========================================================================
    # Batch processing
    # ==========================================================================
    batch_size: int = 3  # Documents dispatched concurrently per group
    ocr_poll_interval_ms: int = 3000  # Delay between OCR job status checks

    # ==========================================================================
    # Object storage & OCR (textract source only)
    # ==========================================================================
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""  # Empty falls back to the default credential chain
    aws_secret_access_key: str = ""
    s3_bucket: str = ""
    s3_prefix: str = "uploads/"

    # ==========================================================================
    # Metrics
    # ==========================================================================
    metrics_pushgateway_url: str = ""  # Push run metrics here when set

    # ==========================================================================
    # AI & LLM Configuration
    # ==========================================================================
    # OpenAI API (mandatory)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    llm_temperature: float = 0.1  # Low temperature keeps matching deterministic
    llm_max_tokens: int = 4000  # Maximum tokens in LLM response
    llm_timeout_seconds: float = 120.0  # Timeout for LLM API calls

    # Retry policy for the matching call
    llm_max_attempts: int = 3  # Total attempts, including the first one
    llm_rate_limit_wait_seconds: float = 60.0  # Used when 429 carries no retry-after
    llm_server_error_wait_seconds: float = 10.0  # Fixed wait after 500/503

    # LLM Caching
    llm_cache_enabled: bool = False
    llm_cache_ttl_seconds: int = 86400  # Cache TTL for LLM responses (24 hours)

    # Cost Tracking
    track_llm_costs: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def missing_required(self, source: str | None = None) -> list[str]:
        """Names of mandatory settings that are not set for a run over `source`."""
        missing = []
        if not self.database_url.strip():
            missing.append("DATABASE_URL")
        if not self.openai_api_key.strip():
            missing.append("OPENAI_API_KEY")
        if source == "textract" and not self.s3_bucket.strip():
            missing.append("S3_BUCKET")
        return missing

    def require(self, source: str | None = None) -> None:
        """
        Validate mandatory settings.

        Raises:
            ConfigError: If any mandatory value is absent
        """
        missing = self.missing_required(source)
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        if self.batch_size < 1:
            raise ConfigError(f"BATCH_SIZE must be >= 1 (got {self.batch_size})")
