"""SQLite database for june state: tasks and spawned agents."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TypedDict, cast

from june.errors import ConflictError, NotFoundError, StorageError, ValidationError
from june.paths import DEFAULT_DB_PATH

log = logging.getLogger(__name__)

VALID_TASK_STATUSES = {"open", "in_progress", "closed"}
DEFAULT_TASK_STATUS = "open"


class AgentKind(StrEnum):
    CODEX = "codex"
    GEMINI = "gemini"


DEFAULT_AGENT_KIND = AgentKind.CODEX


def _utcnow() -> str:
    """ISO 8601 UTC timestamp matching SQLite strftime format."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


# Bump when adding migrations. 0 = legacy (pre-versioning).
SCHEMA_VERSION = 2

SCHEMA = """\
CREATE TABLE IF NOT EXISTS agents (
    name TEXT PRIMARY KEY,
    external_id TEXT NOT NULL,
    session_file TEXT NOT NULL DEFAULT '',
    cursor INTEGER DEFAULT 0,
    pid INTEGER,
    spawned_at TEXT NOT NULL,
    repo_path TEXT DEFAULT '',
    branch TEXT DEFAULT '',
    kind TEXT DEFAULT 'codex'
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    parent_id TEXT REFERENCES tasks(id),
    title TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    repo_path TEXT NOT NULL,
    branch TEXT NOT NULL
);
"""


# -- Row TypedDicts matching table schemas --


class AgentRow(TypedDict):
    name: str
    external_id: str
    session_file: str
    cursor: int
    pid: int | None
    spawned_at: str
    repo_path: str
    branch: str
    kind: str


class TaskRow(TypedDict):
    id: str
    parent_id: str | None
    title: str
    status: str
    notes: str | None
    created_at: str
    updated_at: str
    deleted_at: str | None
    repo_path: str
    branch: str


@dataclass(frozen=True)
class TaskUpdate:
    """Partial task update. ``None`` leaves a field unchanged."""

    title: str | None = None
    status: str | None = None
    notes: str | None = None


@contextlib.contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Re-raise sqlite3 failures as StorageError tagged with the operation."""
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(operation, str(exc)) from exc


@contextlib.contextmanager
def _write_transaction(conn: sqlite3.Connection, operation: str) -> Iterator[None]:
    """Run a block inside ``BEGIN IMMEDIATE`` and commit it as one unit.

    Any exception rolls the whole block back before propagating, with
    sqlite3 failures from the block re-raised as StorageError.
    """
    try:
        with _storage_errors(operation):
            conn.execute("BEGIN IMMEDIATE")
            yield
            conn.commit()
    except BaseException:
        if conn.in_transaction:
            conn.rollback()
        raise


# -- Schema management --


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open the store, creating tables and applying migrations as needed.

    Raises StorageError if the file cannot be opened or any DDL fails; the
    connection is closed in that case.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    except OSError as exc:
        raise StorageError("open database", str(exc)) from exc
    with _storage_errors("open database"):
        conn = sqlite3.connect(str(db_path))
    try:
        with _storage_errors("open database"):
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA busy_timeout=10000")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

            current_version = conn.execute("PRAGMA user_version").fetchone()[0]
            if current_version < SCHEMA_VERSION:
                log.debug("Migrating %s from schema v%d", db_path, current_version)
                _migrate(conn, current_version)
                _create_indexes(conn)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                conn.commit()
    except BaseException:
        conn.close()
        raise
    return conn


@contextlib.contextmanager
def connect(db_path: Path = DEFAULT_DB_PATH):
    """Context manager wrapper for get_connection().

    Usage:
        with connect() as conn:
            do_stuff(conn)
    # conn.close() is guaranteed even on exceptions.
    """
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _add_column_if_missing(
    conn: sqlite3.Connection, table: str, column: str, col_def: str, cols: set[str]
) -> None:
    if column in cols:
        return
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_def}")
    except sqlite3.OperationalError as exc:
        # Another process migrated the same file between our check and the ALTER.
        if "duplicate column name" not in str(exc):
            raise
        log.debug("Column %s.%s added concurrently", table, column)


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """Scope agents by repository and branch."""
    cols = _table_columns(conn, "agents")
    _add_column_if_missing(conn, "agents", "repo_path", "TEXT DEFAULT ''", cols)
    _add_column_if_missing(conn, "agents", "branch", "TEXT DEFAULT ''", cols)


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    cols = _table_columns(conn, "agents")
    _add_column_if_missing(conn, "agents", "kind", "TEXT DEFAULT 'codex'", cols)


_MIGRATIONS = [
    (1, _migrate_to_v1),
    (2, _migrate_to_v2),
]


def _migrate(conn: sqlite3.Connection, from_version: int) -> None:
    """Run schema migrations from from_version to SCHEMA_VERSION.

    Each migration function contains idempotent column-existence checks so
    it's safe for both legacy DBs (upgrading) and fresh DBs (all columns
    already in SCHEMA, checks are no-ops). Commit is handled by the caller.
    """
    for version, migration_fn in _MIGRATIONS:
        if from_version < version:
            migration_fn(conn)


def _create_indexes(conn: sqlite3.Connection) -> None:
    """Create non-PK indexes for common query patterns. Idempotent."""
    conn.executescript("""
        CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_scope ON tasks(repo_path, branch);
        CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
        CREATE INDEX IF NOT EXISTS idx_agents_scope ON agents(repo_path, branch);
    """)


# -- Tasks --


def _validate_title(title: str | None) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title cannot be empty")
    return title


def _validate_task_status(status: str) -> str:
    if status not in VALID_TASK_STATUSES:
        raise ValidationError(
            f"Invalid task status '{status}'. Must be one of: {sorted(VALID_TASK_STATUSES)}"
        )
    return status


def _fetch_task(conn: sqlite3.Connection, task_id: str) -> TaskRow | None:
    row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    return cast(TaskRow, dict(row)) if row else None


def create_task(
    conn: sqlite3.Connection,
    *,
    task_id: str,
    title: str,
    repo_path: str,
    branch: str,
    parent_id: str | None = None,
    status: str = DEFAULT_TASK_STATUS,
    notes: str | None = None,
) -> TaskRow:
    """Insert a task.

    A parent must exist, must not be deleted and must share the new task's
    (repo_path, branch) scope. The parent check and the insert run in one
    transaction so a concurrent delete cannot orphan the child.
    """
    _validate_title(title)
    _validate_task_status(status)
    now = _utcnow()

    with _write_transaction(conn, "create task"):
        if parent_id is not None:
            parent = _fetch_task(conn, parent_id)
            if parent is None:
                raise ValidationError(f"parent task '{parent_id}' not found")
            if parent["deleted_at"] is not None:
                raise ValidationError(f"parent task '{parent_id}' is deleted")
            if parent["repo_path"] != repo_path or parent["branch"] != branch:
                raise ValidationError(f"parent task '{parent_id}' is in a different scope")
        try:
            conn.execute(
                "INSERT INTO tasks (id, parent_id, title, status, notes, created_at, "
                "updated_at, deleted_at, repo_path, branch) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)",
                (task_id, parent_id, title, status, notes, now, now, repo_path, branch),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError("task", task_id) from exc

    return {
        "id": task_id,
        "parent_id": parent_id,
        "title": title,
        "status": status,
        "notes": notes,
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
        "repo_path": repo_path,
        "branch": branch,
    }


def get_task(conn: sqlite3.Connection, task_id: str) -> TaskRow:
    """Look up a task by id, including soft-deleted ones."""
    with _storage_errors("get task"):
        task = _fetch_task(conn, task_id)
    if task is None:
        raise NotFoundError("task", task_id)
    return task


def update_task(conn: sqlite3.Connection, task_id: str, update: TaskUpdate) -> TaskRow:
    """Apply the fields set on ``update`` and refresh updated_at.

    Deleted tasks are treated as missing.
    """
    if update.title is not None:
        _validate_title(update.title)
    if update.status is not None:
        _validate_task_status(update.status)

    with _storage_errors("update task"):
        cursor = conn.execute(
            "UPDATE tasks SET "
            "title = COALESCE(?, title), "
            "status = COALESCE(?, status), "
            "notes = COALESCE(?, notes), "
            "updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (update.title, update.status, update.notes, _utcnow(), task_id),
        )
        conn.commit()
    if cursor.rowcount == 0:
        raise NotFoundError("task", task_id)
    return get_task(conn, task_id)


def list_root_tasks(conn: sqlite3.Connection, repo_path: str, branch: str) -> list[TaskRow]:
    """Live top-level tasks in a scope, newest first."""
    with _storage_errors("list root tasks"):
        rows = conn.execute(
            "SELECT * FROM tasks "
            "WHERE parent_id IS NULL AND deleted_at IS NULL "
            "AND repo_path = ? AND branch = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (repo_path, branch),
        ).fetchall()
    return [cast(TaskRow, dict(row)) for row in rows]


def list_child_tasks(conn: sqlite3.Connection, parent_id: str) -> list[TaskRow]:
    """Live direct children in execution order (oldest first)."""
    with _storage_errors("list child tasks"):
        rows = conn.execute(
            "SELECT * FROM tasks WHERE parent_id = ? AND deleted_at IS NULL "
            "ORDER BY created_at, rowid",
            (parent_id,),
        ).fetchall()
    return [cast(TaskRow, dict(row)) for row in rows]


def count_children(conn: sqlite3.Connection, parent_id: str) -> int:
    with _storage_errors("count children"):
        return conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE parent_id = ? AND deleted_at IS NULL",
            (parent_id,),
        ).fetchone()[0]


def get_task_tree(conn: sqlite3.Connection, task_id: str) -> dict:
    """A task with its live children, each annotated with its own child count."""
    task = get_task(conn, task_id)
    children = [
        {**child, "child_count": count_children(conn, child["id"])}
        for child in list_child_tasks(conn, task_id)
    ]
    return {**task, "children": children}


_SUBTREE_CTE = (
    "WITH RECURSIVE subtree(id) AS ("
    " SELECT ?"
    " UNION"
    " SELECT tasks.id FROM tasks JOIN subtree ON tasks.parent_id = subtree.id"
    ") "
)


def delete_task(conn: sqlite3.Connection, task_id: str) -> list[str]:
    """Soft-delete a task and every descendant in one transaction.

    Returns the ids that were marked deleted, the task itself first.
    Descendants that were already deleted keep their earlier timestamp.
    Raises NotFoundError if the task is missing or already deleted.
    """
    now = _utcnow()
    with _write_transaction(conn, "delete task"):
        task = _fetch_task(conn, task_id)
        if task is None or task["deleted_at"] is not None:
            raise NotFoundError("task", task_id)

        rows = conn.execute(
            _SUBTREE_CTE + "SELECT tasks.id FROM tasks JOIN subtree ON tasks.id = subtree.id "
            "WHERE tasks.deleted_at IS NULL ORDER BY tasks.created_at, tasks.rowid",
            (task_id,),
        ).fetchall()
        deleted_ids = [task_id] + [row["id"] for row in rows if row["id"] != task_id]

        conn.execute(
            _SUBTREE_CTE + "UPDATE tasks SET deleted_at = ? "
            "WHERE id IN (SELECT id FROM subtree) AND deleted_at IS NULL",
            (task_id, now),
        )

    log.debug("Soft-deleted %d task(s) under %s", len(deleted_ids), task_id)
    return deleted_ids


# -- Agents --


def normalize_agent_kind(kind: str | None) -> AgentKind:
    if kind is None or kind == "":
        return DEFAULT_AGENT_KIND
    try:
        return AgentKind(kind)
    except ValueError:
        raise ValidationError(
            f"Invalid agent kind '{kind}'. Must be one of: {[k.value for k in AgentKind]}"
        ) from None


def create_agent(
    conn: sqlite3.Connection,
    *,
    name: str,
    external_id: str,
    repo_path: str = "",
    branch: str = "",
    kind: str | None = None,
    pid: int | None = None,
    session_file: str = "",
) -> AgentRow:
    """Register a spawned agent with its cursor at the start of the transcript."""
    if not name or not name.strip():
        raise ValidationError("agent name cannot be empty")
    agent_kind = normalize_agent_kind(kind)
    spawned_at = _utcnow()
    with _storage_errors("create agent"):
        try:
            conn.execute(
                "INSERT INTO agents (name, external_id, session_file, cursor, pid, "
                "spawned_at, repo_path, branch, kind) VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?)",
                (
                    name,
                    external_id,
                    session_file,
                    pid,
                    spawned_at,
                    repo_path,
                    branch,
                    agent_kind.value,
                ),
            )
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError("agent", name) from exc
        conn.commit()
    return {
        "name": name,
        "external_id": external_id,
        "session_file": session_file,
        "cursor": 0,
        "pid": pid,
        "spawned_at": spawned_at,
        "repo_path": repo_path,
        "branch": branch,
        "kind": agent_kind.value,
    }


def get_agent(conn: sqlite3.Connection, name: str) -> AgentRow:
    with _storage_errors("get agent"):
        row = conn.execute("SELECT * FROM agents WHERE name = ?", (name,)).fetchone()
    if row is None:
        raise NotFoundError("agent", name)
    return cast(AgentRow, dict(row))


def update_cursor(conn: sqlite3.Connection, name: str, cursor: int) -> None:
    """Persist a read position. The stored cursor never moves backwards."""
    if cursor < 0:
        raise ValidationError(f"cursor must be >= 0, got {cursor}")
    with _storage_errors("update cursor"):
        result = conn.execute(
            "UPDATE agents SET cursor = MAX(COALESCE(cursor, 0), ?) WHERE name = ?",
            (cursor, name),
        )
        conn.commit()
    if result.rowcount == 0:
        raise NotFoundError("agent", name)


def update_session_file(conn: sqlite3.Connection, name: str, session_file: str) -> None:
    with _storage_errors("update session file"):
        result = conn.execute(
            "UPDATE agents SET session_file = ? WHERE name = ?", (session_file, name)
        )
        conn.commit()
    if result.rowcount == 0:
        raise NotFoundError("agent", name)


def list_agents(conn: sqlite3.Connection) -> list[AgentRow]:
    with _storage_errors("list agents"):
        rows = conn.execute(
            "SELECT * FROM agents ORDER BY spawned_at DESC, rowid DESC"
        ).fetchall()
    return [cast(AgentRow, dict(row)) for row in rows]


def list_agents_by_scope(
    conn: sqlite3.Connection, repo_path: str, branch: str | None = None
) -> list[AgentRow]:
    """Agents spawned from a repository, optionally narrowed to one branch."""
    query = "SELECT * FROM agents WHERE repo_path = ?"
    params: list[str] = [repo_path]
    if branch is not None:
        query += " AND branch = ?"
        params.append(branch)
    query += " ORDER BY spawned_at DESC, rowid DESC"
    with _storage_errors("list agents"):
        rows = conn.execute(query, params).fetchall()
    return [cast(AgentRow, dict(row)) for row in rows]
