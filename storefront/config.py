"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_duration(value: str | None, default_seconds: int) -> int:
    """Parse durations such as ``7d``, ``12h``, ``30m``, ``45s`` or plain seconds."""
    if not value:
        return default_seconds
    raw = value.strip().lower()
    units = {"d": 86400, "h": 3600, "m": 60, "s": 1}
    try:
        if raw[-1] in units:
            return int(raw[:-1]) * units[raw[-1]]
        return int(raw)
    except (ValueError, IndexError):
        return default_seconds


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    # SQLite dev fallback stored under /db/storefront.db to keep repo tidy
    fallback_path = BASE_DIR / "db" / "storefront.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Storefront API")
    APP_VERSION: Final[str] = os.getenv("APP_VERSION", "1.0.0")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py + Docker)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", os.getenv("PORT", "5000")))

    # CORS: development accepts any origin
    CORS_ORIGINS: Final[tuple[str, ...]] = _split_csv(os.getenv("CORS_ORIGINS")) or (
        ("*",) if APP_ENV == "development" else ("https://shop.example.com",)
    )

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Authentication
    JWT_SECRET: Final[str] = os.getenv("JWT_SECRET", SECRET_KEY)
    JWT_ALGORITHM: Final[str] = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_SECONDS: Final[int] = _parse_duration(os.getenv("JWT_EXPIRES_IN"), 7 * 86400)
    PASSWORD_MIN_LENGTH: Final[int] = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

    # Catalog
    CATALOG_PAGE_SIZE: Final[int] = int(os.getenv("CATALOG_PAGE_SIZE", "10"))
    CATALOG_MAX_PAGE_SIZE: Final[int] = int(os.getenv("CATALOG_MAX_PAGE_SIZE", "100"))
    RECOMMENDED_LIMIT: Final[int] = int(os.getenv("RECOMMENDED_LIMIT", "4"))
    FEATURED_LIMIT: Final[int] = int(os.getenv("FEATURED_LIMIT", "8"))

    # Orders
    FREE_SHIPPING_THRESHOLD: Final[float] = float(os.getenv("FREE_SHIPPING_THRESHOLD", "0"))
    FLAT_SHIPPING_FEE: Final[float] = float(os.getenv("FLAT_SHIPPING_FEE", "0"))
    TAX_RATE: Final[float] = float(os.getenv("TAX_RATE", "0"))

    # Feedback
    FEEDBACK_HIGH_PRIORITY_RATING: Final[int] = int(os.getenv("FEEDBACK_HIGH_PRIORITY_RATING", "3"))
    FEEDBACK_PAGE_SIZE: Final[int] = int(os.getenv("FEEDBACK_PAGE_SIZE", "20"))
    ADMIN_EMAILS: Final[tuple[str, ...]] = _split_csv(os.getenv("ADMIN_EMAILS"))

    # Outbound email (shared by feedback and monitoring)
    SMTP_HOST: Final[str] = os.getenv("SMTP_HOST", "")
    SMTP_PORT: Final[int] = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME: Final[str] = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD: Final[str] = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS: Final[bool] = _str_to_bool(os.getenv("SMTP_USE_TLS"), default=True)
    SMTP_FROM_EMAIL: Final[str] = os.getenv("SMTP_FROM_EMAIL", "")
    SMTP_TIMEOUT_SECONDS: Final[int] = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))

    # Observability and reliability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _str_to_bool(os.getenv("OBSERVABILITY_ENABLED"), default=True)

    # Monitoring / alerting
    MONITORING_ENABLED: Final[bool] = _str_to_bool(os.getenv("MONITORING_ENABLED"), default=False)
    MONITORING_INTERVAL_SECONDS: Final[int] = int(os.getenv("MONITORING_INTERVAL_SECONDS", "60"))
    MONITORING_CONFIG_PATH: Final[str] = os.getenv("MONITORING_CONFIG_PATH", "")
    MONITORING_HEALTH_URL: Final[str] = os.getenv(
        "MONITORING_HEALTH_URL", f"http://localhost:{FLASK_RUN_PORT}/api/health"
    )
    MONITORING_WEBHOOK_URLS: Final[tuple[str, ...]] = _split_csv(os.getenv("MONITORING_WEBHOOK_URLS"))
    MONITORING_WEBHOOK_API_KEY: Final[str] = os.getenv("MONITORING_WEBHOOK_API_KEY", "")
    MONITORING_SMS_GATEWAY_URL: Final[str] = os.getenv("MONITORING_SMS_GATEWAY_URL", "")
    MONITORING_SMS_NUMBERS: Final[tuple[str, ...]] = _split_csv(os.getenv("MONITORING_SMS_NUMBERS"))

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["JSON_SORT_KEYS"] = False
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["OBSERVABILITY_ENABLED"] = cls.OBSERVABILITY_ENABLED
        app.config["MONITORING_ENABLED"] = cls.MONITORING_ENABLED
