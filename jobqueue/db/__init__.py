"""
Database module.
Contains database connection, models, and the job store.
"""

from jobqueue.db.connection import (
    STORE_ERRORS,
    close_db,
    create_engine_for_url,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_context,
    init_db,
    init_schema,
)
from jobqueue.db.models import Base, Job
from jobqueue.db.repository import JobStore

__all__ = [
    "STORE_ERRORS",
    "get_async_session",
    "get_session_context",
    "get_engine",
    "create_engine_for_url",
    "create_session_factory",
    "init_db",
    "init_schema",
    "close_db",
    "Job",
    "Base",
    "JobStore",
]
