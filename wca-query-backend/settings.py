"""
WCA Query Backend - Settings
============================

Environment-driven configuration. Values come from the process environment,
optionally seeded from a local .env file (python-dotenv).

USAGE:
    from settings import load_settings
    settings = load_settings()
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv


class SettingsError(Exception):
    """Raised for invalid configuration."""

    pass


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the API process."""
    database_url: str
    jwt_secret: str
    db_pool_size: int = 10
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    default_page_size: int = 50
    max_user_limit: int = 100
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Read an integer >= 1 from env, with a helpful error."""
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got: {raw!r}")
    if value < 1:
        raise SettingsError(f"{name} must be >= 1, got: {value}")
    return value


def build_database_url(env: Mapping[str, str]) -> str:
    """
    Build the SQLAlchemy URL for the WCA mirror.

    DATABASE_URL wins when set; otherwise the DB_* parts used by the import
    tooling are assembled into a mysql+pymysql URL.
    """
    explicit = (env.get("DATABASE_URL") or "").strip()
    if explicit:
        return explicit

    host = env.get("DB_HOST", "localhost")
    port = env.get("DB_PORT", "3306")
    user = env.get("DB_USER", "root")
    password = env.get("DB_PASS", "")
    name = env.get("DB_NAME", "wca")

    credentials = quote_plus(user)
    if password:
        credentials += ":" + quote_plus(password)
    return f"mysql+pymysql://{credentials}@{host}:{port}/{name}?charset=utf8mb4"


def load_settings(env: Optional[Dict[str, str]] = None) -> Settings:
    """
    Load settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (tests). When omitted,
             .env is loaded first without overriding real variables.

    Raises:
        SettingsError: If a required value is missing or malformed.
    """
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    jwt_secret = (env.get("JWT_SECRET") or "").strip()
    if not jwt_secret:
        raise SettingsError("JWT_SECRET not set")

    origins = [
        origin.strip()
        for origin in env.get("CORS_ORIGINS", "http://localhost:5173").split(",")
        if origin.strip()
    ]

    log_level = env.get("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise SettingsError(f"LOG_LEVEL must be a logging level name, got: {log_level!r}")

    return Settings(
        database_url=build_database_url(env),
        jwt_secret=jwt_secret,
        db_pool_size=_positive_int(env, "DB_POOL_SIZE", 10),
        cors_origins=origins,
        default_page_size=_positive_int(env, "DEFAULT_PAGE_SIZE", 50),
        max_user_limit=_positive_int(env, "MAX_USER_LIMIT", 100),
        host=env.get("HOST", "0.0.0.0"),
        port=_positive_int(env, "PORT", 3001),
        log_level=log_level,
    )
