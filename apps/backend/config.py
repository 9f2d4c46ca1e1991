"""Конфигурация приложения."""
from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class ArtemisConfigError(Exception):
    """Missing or unusable Artemis credentials/configuration."""


class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    artemis_base_url: str = "https://127.0.0.1:443/artemis"
    artemis_app_key: str = ""
    artemis_app_secret: str = ""
    artemis_verify_tls: bool = True
    artemis_timeout_seconds: float = 30.0
    artemis_event_dest: str = ""  # callback URL handed to eventSubscriptionByEventTypes

    webhook_path: str = "/eventRcv"
    webhook_path_aliases: list[str] = ["/eventRcvl"]  # upstream typo seen in subscriptions
    webhook_receive_timeout_seconds: float = 30.0
    request_store_capacity: int = 100

    http_host: str = "0.0.0.0"
    http_port: int = 8082
    https_port: int = 443
    ssl_certfile: str = "cert.pem"
    ssl_keyfile: str = "key.pem"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def require_credentials(settings: Settings) -> tuple[str, str]:
    """Return (app_key, app_secret) or raise ArtemisConfigError."""
    key = (settings.artemis_app_key or "").strip()
    secret = settings.artemis_app_secret or ""
    missing = [name for name, val in (("artemis_app_key", key), ("artemis_app_secret", secret)) if not val]
    if missing:
        raise ArtemisConfigError(f"missing credentials: {', '.join(missing)}")
    return key, secret
