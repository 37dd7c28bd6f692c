"""Action Flows package initialisation."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .db import Base, get_engine, get_session_factory, init_db, session_scope  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import ActionFlow, Notification, User  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "Base",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
    "ActionFlow",
    "Notification",
    "User",
    "configure_logging",
]
