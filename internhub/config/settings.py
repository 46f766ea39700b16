"""Runtime configuration read from the environment (and ``.env``)."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


Environment = Literal["development", "staging", "production", "testing"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Every knob the API reads; names map 1:1 to upper-case env vars."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Service
    # ==========================================================================

    app_name: str = "internhub"
    app_version: str = "0.1.0"
    environment: Environment = "development"
    debug: bool = True
    api_host: str = "0.0.0.0"  # noqa: S104
    api_port: int = 8000

    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # ==========================================================================
    # Infrastructure
    # ==========================================================================

    # Bearer tokens come from the identity service; only validated here
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        min_length=32,
    )
    auth_algorithm: str = "HS256"
    auth_access_token_expire_minutes: int = 15

    cassandra_hosts: list[str] = ["localhost"]
    cassandra_port: int = 9042
    cassandra_keyspace: str = "internhub"
    cassandra_username: str | None = None
    cassandra_password: str | None = None
    cassandra_protocol_version: int = 4
    cassandra_connect_timeout: float = 10.0
    cassandra_request_timeout: float = 10.0

    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 10
    redis_socket_timeout: float = 5.0
    redis_socket_connect_timeout: float = 5.0

    log_level: LogLevel = "DEBUG"
    log_format: Literal["json", "console"] = "console"
    log_include_caller_info: bool = True
    log_dir: str = "logs"
    log_file_max_bytes: int = 10 * 1024 * 1024
    log_file_backup_count: int = 5
    log_requests: bool = True
    log_exclude_paths: list[str] = ["/health"]

    # ==========================================================================
    # Payments (Razorpay)
    # ==========================================================================

    razorpay_key_id: str = ""
    razorpay_key_secret: str = Field(
        default="", description="API secret; also signs checkout callbacks"
    )
    razorpay_webhook_secret: str = Field(
        default="", description="Signs webhook bodies"
    )
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    razorpay_timeout_seconds: float = 15.0
    payment_currency: str = "INR"
    payment_settlement_lease_seconds: int = Field(
        default=30,
        gt=0,
        description="How long one verification holds the settlement lease",
    )

    # ==========================================================================
    # Progression and certificates
    # ==========================================================================

    progress_update_max_attempts: int = Field(
        default=5, ge=1, description="Compare-and-swap attempts per progress update"
    )
    submission_slot_lease_seconds: int = Field(
        default=60,
        gt=0,
        description="Age after which an orphaned pending slot may be reclaimed",
    )
    certificate_completion_threshold: Decimal = Field(
        default=Decimal("1.0"),
        ge=0,
        le=1,
        description="Fraction of mandatory tasks that must be approved",
    )
    certificate_default_grade: Decimal = Field(
        default=Decimal(8),
        ge=0,
        le=10,
        description="Grade assumed for approved submissions without one",
    )
    certificate_number_max_attempts: int = Field(default=5, ge=1)
    certificate_reservation_lease_seconds: int = Field(
        default=60,
        gt=0,
        description="Age after which an unfinished issuance may be taken over",
    )
    certificate_verify_base_url: str = "http://localhost:3000/verify-certificate"

    # ==========================================================================
    # Optional integrations
    # ==========================================================================

    firebase_enabled: bool = False
    firebase_credentials_path: str | None = None
    firebase_storage_bucket: str | None = None
    firebase_project_id: str | None = None

    email_enabled: bool = False
    email_credentials_path: str = "credentials/google-service-account.json"
    email_sender_address: str = "programs@internhub.in"
    email_sender_name: str = "InternHub"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        return self.environment == "testing"

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def firebase_configured(self) -> bool:
        """Documents are rendered only when a bucket and credentials are set."""
        return bool(
            self.firebase_enabled
            and self.firebase_credentials_path
            and self.firebase_storage_bucket
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.email_enabled and self.email_sender_address)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, parsed once."""
    return Settings()
