"""Runtime configuration for the store (read from env, overridable in tests)."""
import os
from typing import NamedTuple


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    token_ttl_seconds: int
    refresh_window_seconds: int
    list_timeout_seconds: float
    log_level: str


def from_env() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./storefront.db"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", "600")),
        refresh_window_seconds=int(os.getenv("REFRESH_WINDOW_SECONDS", "120")),
        list_timeout_seconds=float(os.getenv("LIST_TIMEOUT_SECONDS", "2.0")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


state = from_env()


def configure(**overrides) -> Settings:
    global state
    state = state._replace(**overrides)
    return state


def reset():
    global state
    state = from_env()


def get_settings() -> Settings:
    return state
