"""
steuerbuch.storage.project
~~~~~~~~~~~~~~~~~~~~~~~~~~
Where a project keeps its books on disk.

One project is one directory under the steuerbuch home (``~/.steuerbuch``,
or ``$STEUERBUCH_HOME``)::

    <home>/<project>/steuerbuch.db                  the ledger database
    <home>/<project>/statements/<sha256><suffix>    imported source files

A project usually holds one company's books, but nothing stops several
company IDs from sharing a database.

Usage::

    from steuerbuch.storage.project import resolve_project, layout_from_db_path

    layout = resolve_project("acme-gmbh")           # explicit project
    layout = resolve_project()                      # STEUERBUCH_PROJECT or "default"
    layout = layout_from_db_path(Path("books.db"))  # ad-hoc database anywhere
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PROJECT = "default"
DB_FILENAME     = "steuerbuch.db"
ARCHIVE_DIRNAME = "statements"

# Archive suffix when the source file name is unknown
FORMAT_SUFFIXES = {
    "CSV":     ".csv",
    "MT940":   ".sta",
    "CAMT053": ".xml",
}

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")


def steuerbuch_home() -> Path:
    """``$STEUERBUCH_HOME`` if set, else ``~/.steuerbuch``."""
    override = os.environ.get("STEUERBUCH_HOME")
    return Path(override).expanduser() if override else Path.home() / ".steuerbuch"


@dataclass(frozen=True)
class ProjectLayout:
    name:           str
    root:           Path
    db_path:        Path
    statements_dir: Path

    @property
    def is_default(self) -> bool:
        return self.name == DEFAULT_PROJECT

    def archive_path(
        self, content_hash: str, source_format: str, filename: str | None = None,
    ) -> Path:
        """
        Archive location of an imported statement.

        Keyed by content hash, so re-importing the same bytes under another
        name lands on the same file.
        """
        suffix = Path(filename).suffix.lower() if filename else ""
        return self.statements_dir / f"{content_hash}{suffix or FORMAT_SUFFIXES.get(source_format, '')}"


def resolve_project(
    project: str | None = None,
    *,
    env_var: bool = True,
) -> ProjectLayout:
    """
    Layout for ``project``, else ``STEUERBUCH_PROJECT`` (when ``env_var``),
    else ``"default"``.

    Raises ``ValueError`` for names that are not safe as a directory name.
    """
    name = project or (os.environ.get("STEUERBUCH_PROJECT") if env_var else None) or DEFAULT_PROJECT
    problem = validate_project_name(name)
    if problem:
        raise ValueError(f"Invalid project name {name!r}: {problem}")
    root = steuerbuch_home() / name
    return ProjectLayout(
        name=name,
        root=root,
        db_path=root / DB_FILENAME,
        statements_dir=root / ARCHIVE_DIRNAME,
    )


def layout_from_db_path(db_path: Path) -> ProjectLayout:
    """
    Layout around an explicit database file.

    The archive sits next to the database. The project name is the
    directory name for ``<home>/<name>/steuerbuch.db`` and the file stem
    for any other path.
    """
    db_path = Path(db_path).resolve()
    root    = db_path.parent
    in_home = root.parent == steuerbuch_home().resolve() and db_path.name == DB_FILENAME
    return ProjectLayout(
        name=root.name if in_home else db_path.stem,
        root=root,
        db_path=db_path,
        statements_dir=root / ARCHIVE_DIRNAME,
    )


def validate_project_name(name: str) -> str | None:
    """Return why ``name`` is not a valid project name, or ``None``."""
    if not name or not name.strip():
        return "name is empty"
    if not _NAME_RE.match(name):
        return "use 1-64 lowercase letters, digits, '-' or '_', starting with a letter or digit"
    return None


__all__ = [
    "DB_FILENAME",
    "DEFAULT_PROJECT",
    "FORMAT_SUFFIXES",
    "ProjectLayout",
    "layout_from_db_path",
    "resolve_project",
    "steuerbuch_home",
    "validate_project_name",
]
