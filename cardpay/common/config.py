"""Central environment-driven settings for the checkout service.

`CommonSettings` only holds defaulted values and is safe to load at import
time. Gateway credentials live in `GatewaySettings`, which is loaded once at
startup through `load_gateway_settings()` (see `.env.example`).
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cardpay.common.errors import ConfigurationError


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "checkout-api"
    log_level: str = "INFO"
    redis_url: str = "redis://redis:6379/0"
    kafka_bootstrap_servers: str = "kafka:9092"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    event_publishing_enabled: bool = False
    dispatch_ledger: Literal["redis", "memory"] = "redis"
    dispatch_ledger_ttl_seconds: int = 7 * 86400
    dispatch_ledger_pending_ttl_seconds: int = 300
    gateway_timeout_seconds: float = 10.0
    poll_max_attempts: int = 10
    poll_interval_ms: int = 2000
    poll_deadline_seconds: float = 60.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class GatewaySettings(BaseSettings):
    """Merchant credentials and callback URLs for the Pagsmile gateway."""

    app_id: str = Field(min_length=1)
    security_key: str = Field(min_length=1)
    public_key: str = Field(min_length=1)
    environment: str = "sandbox"
    notify_url: str = "http://localhost:3000/api/webhook/payment"
    return_url: str = "http://localhost:3000/success"
    api_base_url: str = "https://gateway.pagsmile.com"
    webhook_secret: str | None = None
    model_config = SettingsConfigDict(env_prefix="PAGSMILE_", env_file=".env", extra="ignore")

    @field_validator("app_id", "security_key", "public_key", mode="before")
    @classmethod
    def strip_credentials(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("webhook_secret", mode="before")
    @classmethod
    def blank_secret_is_unset(cls, value):
        # An empty PAGSMILE_WEBHOOK_SECRET= line means "not configured".
        if isinstance(value, str) and not value.strip():
            return None
        return value


REQUIRED_GATEWAY_VARS = ("PAGSMILE_APP_ID", "PAGSMILE_SECURITY_KEY", "PAGSMILE_PUBLIC_KEY")
ENVIRONMENTS = ("sandbox", "prod")


def load_gateway_settings(**overrides) -> GatewaySettings:
    """Load and validate gateway settings, failing startup with a readable error.

    Blank credentials count as missing, and missing names are reported in
    `REQUIRED_GATEWAY_VARS` order.
    """

    try:
        gateway = GatewaySettings(**overrides)
    except ValidationError as exc:
        absent = {
            f"PAGSMILE_{str(err['loc'][0]).upper()}"
            for err in exc.errors()
            if err["type"] in ("missing", "string_too_short")
        }
        missing = [name for name in REQUIRED_GATEWAY_VARS if name in absent]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}") from exc
        raise ConfigurationError(str(exc)) from exc

    if gateway.environment not in ENVIRONMENTS:
        raise ConfigurationError(
            f'Invalid PAGSMILE_ENVIRONMENT: {gateway.environment}. Must be "sandbox" or "prod"'
        )
    return gateway


settings = CommonSettings()
