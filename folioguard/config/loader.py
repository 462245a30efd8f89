"""Environment config loading with pydantic-settings."""

from __future__ import annotations

import signal

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class SecuritySettings(BaseSettings):
    """Security pipeline configuration. Env vars (``FOLIO_*``) override the defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FOLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "production"  # "production" or "development"
    debug: bool = False  # verbose error bodies (never enable in production)
    log_level: str = "info"
    log_json: bool = True
    host: str = "0.0.0.0"
    port: int = 8000

    # Backing store for CSRF tokens and rate-limit windows: "memory" or "redis"
    store_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    redis_pool_size: int = 10
    store_sweep_interval_seconds: int = 60

    # CSRF
    csrf_token_ttl_seconds: int = 3600
    csrf_header_name: str = "x-csrf-token"
    csrf_body_field: str = "_csrf"

    # Rate limiting (per purpose)
    rate_limit_api_max: int = 100
    rate_limit_api_window_seconds: int = 900
    rate_limit_contact_max: int = 5
    rate_limit_contact_window_seconds: int = 900
    rate_limit_login_max: int = 5
    rate_limit_login_window_seconds: int = 900
    rate_limit_upload_max: int = 20
    rate_limit_upload_window_seconds: int = 3600
    trust_forwarded_for: bool = False

    # Security headers
    header_preset: str = "strict"

    # Sanitization
    sanitize_strict_mode: bool = False
    database_field_max_length: int = 50000

    # Uploads
    upload_image_max_bytes: int = 5 * 1024 * 1024

    # Identity accessor for the bundled app: bearer key -> "admin" identity
    admin_api_key: str = ""

    # Recent security events kept in memory for the admin view
    security_event_buffer_size: int = 500

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


_settings: SecuritySettings | None = None


def get_settings() -> SecuritySettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> SecuritySettings:
    """Load settings from env vars (env vars override model defaults)."""
    global _settings
    _settings = SecuritySettings()
    logger.info(
        "config_loaded",
        environment=_settings.environment,
        store_backend=_settings.store_backend,
        header_preset=_settings.header_preset,
    )
    return _settings


def register_reload_handler() -> None:
    """Register SIGHUP handler for hot-reload of configuration."""
    import threading

    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return

    def _reload(signum, frame):
        logger.info("config_reload_triggered")
        load_settings()

    try:
        signal.signal(signal.SIGHUP, _reload)
    except (ValueError, AttributeError):
        logger.debug("skipping_sighup_handler", reason="signal not supported")
