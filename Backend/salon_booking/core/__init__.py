"""
Core module - configuration, database, clock, and response formatting.
"""
from .config import Settings, get_settings
from .db import (
    AsyncSessionLocal,
    Base,
    build_engine,
    build_session_factory,
    engine,
    get_session,
    init_models,
    unit_of_work,
)
from .clock import ensure_utc, local_now, local_today, parse_clock_time, utc_now
from .responses import ErrorCodes, ErrorDetail, ErrorResponse, error_response

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "AsyncSessionLocal",
    "Base",
    "build_engine",
    "build_session_factory",
    "engine",
    "get_session",
    "init_models",
    "unit_of_work",
    # Clock
    "ensure_utc",
    "local_now",
    "local_today",
    "parse_clock_time",
    "utc_now",
    # Responses
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    "error_response",
]
