"""Persistence layer for approvalflow workflows."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import ApprovalflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

logger = logging.getLogger(__name__)

_repository_instance: WorkflowRepository | None = None


def _open_repository(database_url: Optional[str]) -> WorkflowRepository:
    if not database_url:
        logger.warning(
            "No database configured; workflow state is kept in memory and "
            "lost when the process exits"
        )
        return InMemoryWorkflowRepository()
    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1) or ":memory:"
        return SQLiteWorkflowRepository(path)
    if database_url.startswith(("postgres://", "postgresql://")):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available; install asyncpg")
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[ApprovalflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide workflow repository.

    The backend is chosen from ``database_url`` which can be provided
    explicitly, via ``APPROVALFLOW_DATABASE_URL`` or ``DATABASE_URL``, or from
    loaded configuration: ``sqlite://<path>`` or ``postgres(ql)://...``.
    Without any database the repository lives in memory, which suits tests
    and single-process demos only. Passing ``database_url`` or ``config``
    replaces the shared instance.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("APPROVALFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )
    _repository_instance = _open_repository(database_url)
    return _repository_instance


def reset_repository() -> None:
    """Forget the shared repository so the next lookup re-reads configuration."""
    global _repository_instance
    _repository_instance = None


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
    "reset_repository",
]
