from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..domain.quota import ANONYMOUS_DAILY_LIMIT, AUTHENTICATED_DAILY_LIMIT

DEFAULT_CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-user-fingerprint",
    "x-user-ip",
]


class Settings(BaseSettings):
    """Quota service configuration, read from `CANQUOTA_*` variables and `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="CANQUOTA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    project_name: str = "Can Mockup Quota API"
    api_v1_prefix: str = "/v1"
    log_level: str = Field(default="INFO")

    database_url: str | None = Field(
        default="sqlite+aiosqlite:///./canquota.db",
        description="SQLAlchemy async connection string for the usage store",
    )
    auto_create_schema: bool = Field(
        default=True,
        description="Create missing tables on startup instead of relying on alembic",
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for a single check/record round trip to the store",
    )

    anonymous_daily_limit: int = Field(default=ANONYMOUS_DAILY_LIMIT, ge=0)
    authenticated_daily_limit: int = Field(default=AUTHENTICATED_DAILY_LIMIT, ge=0)
    max_fingerprint_length: int = Field(default=500, ge=1)
    trust_socket_address: bool = Field(
        default=False,
        description="Fall back to the TCP peer address when no proxy header carries the client IP",
    )

    jwt_secret: str = Field(
        default="",
        description="Shared secret used to verify bearer credentials issued by the auth provider",
    )
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = Field(
        default="authenticated",
        description="Expected `aud` claim; empty disables audience verification",
    )
    access_token_expire_minutes: int = Field(default=60, ge=1)

    admin_emails_raw: str = Field(default="", alias="CANQUOTA_ADMIN_EMAILS")
    cors_origins_raw: str = Field(default="*", alias="CANQUOTA_CORS_ORIGINS")
    cors_allow_headers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ALLOW_HEADERS)
    )

    anonymous_usage_retention_days: int = Field(default=30, ge=1)
    attempt_log_retention_days: int = Field(default=90, ge=1)

    enable_prometheus_metrics: bool = Field(
        default=True, description="Serve the Prometheus registry and count HTTP requests"
    )
    prometheus_metrics_path: str = Field(
        default="/metrics/prometheus",
        description="Route serving the Prometheus text exposition",
    )
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP/HTTP collector URL; tracing stays off when unset",
    )
    otel_exporter_otlp_headers: str | None = Field(
        default=None,
        description="Extra collector headers as `key=value` pairs separated by commas",
    )
    otel_service_name: str | None = Field(
        default=None, description="Overrides the `service.name` resource attribute"
    )

    @property
    def admin_emails(self) -> List[str]:
        return [
            email.strip().lower()
            for email in self.admin_emails_raw.split(",")
            if email.strip()
        ]

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins_raw.split(",") if origin.strip()]

    def daily_limit_for(self, is_authenticated: bool) -> int:
        if is_authenticated:
            return self.authenticated_daily_limit
        return self.anonymous_daily_limit


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process; tests pass their own instance."""

    return Settings()
