"""
Core package containing configuration, database, security, and logging.
"""
from siteinsights.core.config import settings
from siteinsights.core.database import Base, DbSession, get_db_session
from siteinsights.core.logging import configure_logging, get_logger
from siteinsights.core.security import (
    build_service_account_assertion,
    normalize_private_key,
)

__all__ = [
    "settings",
    "Base",
    "DbSession",
    "get_db_session",
    "configure_logging",
    "get_logger",
    "build_service_account_assertion",
    "normalize_private_key",
]
