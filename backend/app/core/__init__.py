"""Configuration, persistence and logging shared by every AuthCore layer."""

from .config import Settings, get_settings, settings
from .database import (
    Base,
    async_session_maker,
    check_db_connection,
    configure_engine,
    engine,
    get_db,
    init_db,
)
from .logging import get_logger, redact_email, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "redact_email",
    "Base",
    "engine",
    "configure_engine",
    "async_session_maker",
    "get_db",
    "init_db",
    "check_db_connection",
]
