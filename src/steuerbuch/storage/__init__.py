"""
steuerbuch.storage
~~~~~~~~~~~~~~~~~~
Pluggable persistence layer for statements, invoices, ledger entries and
tax reports.

Default backend: SQLite at ``~/.steuerbuch/default/steuerbuch.db``.

Usage::

    from steuerbuch.storage import get_repository

    repo = get_repository()                     # SQLite default
    for s in repo.list_statements("acme"):
        print(s.account_id, s.statement_date, s.status)
"""

from __future__ import annotations

from .base import LedgerRepository
from .project import resolve_project
from .sqlite import SQLiteRepository


def get_repository(db_path=None, project: str | None = None) -> SQLiteRepository:
    """Return the SQLite repository for an explicit path or a project name."""
    if db_path is None and project is not None:
        db_path = resolve_project(project).db_path
    return SQLiteRepository(db_path=db_path)


__all__ = ["LedgerRepository", "SQLiteRepository", "get_repository"]
