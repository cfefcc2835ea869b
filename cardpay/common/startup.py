"""Startup-time helpers for safe config logging."""

from pydantic_settings import BaseSettings

from cardpay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token")


def redact_settings(values: BaseSettings) -> dict[str, object]:
    """Dump a settings object with secret-like field names masked."""

    redacted: dict[str, object] = {}
    for name, value in values.model_dump().items():
        if name == "public_key":
            redacted[name] = value
        elif any(marker in name for marker in SECRET_MARKERS):
            redacted[name] = "<unset>" if value is None else "<redacted>"
        else:
            redacted[name] = value
    return redacted


def log_startup_config(service_name: str, *sections: BaseSettings) -> None:
    """Log effective configuration once so misconfigured deploys are obvious."""

    config: dict[str, object] = {"service": service_name}
    for section in sections:
        config.update(redact_settings(section))
    logger.info("startup_config=%s", config)
    if "webhook_secret" in config and config["webhook_secret"] == "<unset>":
        logger.warning("webhook signature verification disabled: PAGSMILE_WEBHOOK_SECRET is not set")
