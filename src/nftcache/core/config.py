"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_OUTPUT_FORMATS = ("WEBP", "PNG")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every field has a default so the service starts without any configuration.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./nftcache.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Solana RPC
    solana_rpc_url: str = Field(default="https://api.mainnet-beta.solana.com", alias="SOLANA_RPC_URL")
    # DAS-capable endpoint for collection enumeration (falls back to SOLANA_RPC_URL)
    das_rpc_url: str = Field(default="", alias="DAS_RPC_URL")
    das_page_size: int = Field(default=1000, alias="DAS_PAGE_SIZE")
    rpc_timeout_seconds: float = Field(default=10.0, alias="RPC_TIMEOUT_SECONDS")
    # 0 disables client-side rate limiting
    rpc_requests_per_second: float = Field(default=10.0, alias="RPC_REQUESTS_PER_SECOND")
    metadata_program_id: str = Field(
        default="metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s", alias="METADATA_PROGRAM_ID"
    )
    token_2022_program_id: str = Field(
        default="TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb", alias="TOKEN_2022_PROGRAM_ID"
    )

    # Cache storage
    cache_dir: str = Field(default="./cache", alias="CACHE_DIR")
    placeholder_image_path: str = Field(default="", alias="PLACEHOLDER_IMAGE_PATH")
    image_variants: dict[str, int] = Field(
        default={"thumbnail": 64, "medium": 256, "full": 1024}, alias="IMAGE_VARIANTS"
    )
    default_variant: str = Field(default="medium", alias="DEFAULT_VARIANT")
    output_format: str = Field(default="WEBP", alias="OUTPUT_FORMAT")

    # Media fetching
    fetch_timeout_seconds: float = Field(default=15.0, alias="FETCH_TIMEOUT_SECONDS")
    fetch_max_bytes: int = Field(default=20 * 1024 * 1024, alias="FETCH_MAX_BYTES")
    fetch_max_redirects: int = Field(default=5, alias="FETCH_MAX_REDIRECTS")
    ipfs_gateway: str = Field(default="https://ipfs.io", alias="IPFS_GATEWAY")
    arweave_gateway: str = Field(default="https://arweave.net", alias="ARWEAVE_GATEWAY")

    # Retry policy for transient errors
    retry_attempts: int = Field(default=3, alias="RETRY_ATTEMPTS")
    retry_backoff_seconds: float = Field(default=1.0, alias="RETRY_BACKOFF_SECONDS")
    retry_backoff_max_seconds: float = Field(default=8.0, alias="RETRY_BACKOFF_MAX_SECONDS")
    # Unset: failed records are only retried on explicit refresh
    failed_retry_cooldown_seconds: int | None = Field(
        default=None, alias="FAILED_RETRY_COOLDOWN_SECONDS"
    )

    # Collection loader
    metadata_workers: int = Field(default=4, alias="METADATA_WORKERS")
    fetch_workers: int = Field(default=16, alias="FETCH_WORKERS")
    persist_workers: int = Field(default=4, alias="PERSIST_WORKERS")
    pipeline_queue_size: int = Field(default=64, alias="PIPELINE_QUEUE_SIZE")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def das_endpoint(self) -> str:
        """DAS endpoint, defaulting to the regular RPC endpoint."""
        return self.das_rpc_url or self.solana_rpc_url

    @model_validator(mode="after")
    def validate_config(self) -> "Settings":
        """Validate configuration on startup.

        Fails fast with a single error listing every inconsistent value.
        """
        problems = []

        if not self.image_variants:
            problems.append("IMAGE_VARIANTS: at least one variant is required")
        for name, edge in self.image_variants.items():
            if edge <= 0:
                problems.append(f"IMAGE_VARIANTS: variant '{name}' must have a positive size")

        if self.image_variants and self.default_variant not in self.image_variants:
            problems.append(
                f"DEFAULT_VARIANT: '{self.default_variant}' is not one of "
                f"{sorted(self.image_variants)}"
            )

        self.output_format = self.output_format.upper()
        if self.output_format not in SUPPORTED_OUTPUT_FORMATS:
            problems.append(f"OUTPUT_FORMAT: must be one of {', '.join(SUPPORTED_OUTPUT_FORMATS)}")

        for field_name in ("metadata_workers", "fetch_workers", "persist_workers"):
            if getattr(self, field_name) < 1:
                problems.append(f"{field_name.upper()}: must be at least 1")
        if self.pipeline_queue_size < 1:
            problems.append("PIPELINE_QUEUE_SIZE: must be at least 1")
        if self.retry_attempts < 1:
            problems.append("RETRY_ATTEMPTS: must be at least 1")
        if self.fetch_max_bytes < 1:
            problems.append("FETCH_MAX_BYTES: must be positive")

        if problems:
            error_msg = "Invalid configuration:\n\n" + "\n".join(f"  - {p}" for p in problems)
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        # JSON output for production (log aggregation)
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        # Console output for development (human-readable)
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
