"""Runtime configuration for the ledger (overridable during tests/runtime)."""
import os
import sys
from typing import NamedTuple

from loguru import logger


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    log_level: str
    cents_per_point: int


def _from_env() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./ledger.db"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        cents_per_point=int(os.getenv("CENTS_PER_POINT", "25")),
    )


state = _from_env()


def get_settings() -> Settings:
    return state


def set_settings(**overrides) -> Settings:
    global state
    state = state._replace(**overrides)
    return state


def configure_logging(level: str | None = None):
    logger.remove()
    logger.add(sys.stderr, level=(level or state.log_level).upper())
