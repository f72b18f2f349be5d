"""Cursor-based reading of agent transcripts.

``logs`` always re-reads a transcript from the first line and leaves the
agent untouched. ``peek`` reads from the agent's stored cursor and then
persists the new line count, so the next peek only sees later lines. If
the process dies before the cursor is written, the same lines are
returned again on the next peek.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from june.config import JuneConfig
from june.db import AgentRow, get_agent, update_cursor, update_session_file
from june.errors import SessionNotFoundError, StorageError
from june.sessions import find_session_file
from june.transcripts import OUTPUT_TRUNCATE_LIMIT, Entry, decode_lines

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeekResult:
    entries: list[Entry]
    cursor: int
    previous_cursor: int


def read_transcript(
    path: Path | str,
    from_line: int,
    kind: str | None = None,
    *,
    truncate: int = OUTPUT_TRUNCATE_LIMIT,
) -> tuple[list[Entry], int]:
    """Decode every complete line after the first ``from_line`` lines.

    Returns the entries and the number of complete lines in the file. A
    final line without a trailing newline is still being written by the
    agent: it is neither decoded nor counted, and a later read picks it up
    once it is complete.
    """
    try:
        f = open(path, "rb")
    except FileNotFoundError as exc:
        raise SessionNotFoundError(str(path), f"session file '{path}' does not exist") from exc

    line_count = 0
    new_lines: list[bytes] = []
    with f:
        for raw in f:
            if not raw.endswith(b"\n"):
                break
            line_count += 1
            if line_count > from_line:
                new_lines.append(raw)

    return decode_lines(new_lines, kind, truncate=truncate), line_count


def resolve_session_file(conn: sqlite3.Connection, agent: AgentRow, config: JuneConfig) -> Path:
    """Return the agent's transcript path, locating and caching it on first use.

    A cached path is only re-derived when the file no longer exists.
    """
    cached = agent["session_file"]
    if cached and Path(cached).is_file():
        return Path(cached)
    if cached:
        log.info("Session file %s for agent %s is gone, searching again", cached, agent["name"])

    path = find_session_file(config, agent["kind"], agent["external_id"])
    try:
        update_session_file(conn, agent["name"], str(path))
    except StorageError:
        log.warning("Failed to cache session file for agent %s", agent["name"], exc_info=True)
    return path


def logs(conn: sqlite3.Connection, name: str, config: JuneConfig) -> list[Entry]:
    """Full transcript of an agent. Does not move the cursor."""
    agent = get_agent(conn, name)
    path = resolve_session_file(conn, agent, config)
    entries, _ = read_transcript(path, 0, agent["kind"], truncate=config.output_truncate)
    return entries


def peek(conn: sqlite3.Connection, name: str, config: JuneConfig) -> PeekResult:
    """Entries since the last peek, advancing the stored cursor."""
    agent = get_agent(conn, name)
    path = resolve_session_file(conn, agent, config)
    previous = agent["cursor"] or 0
    entries, line_count = read_transcript(
        path, previous, agent["kind"], truncate=config.output_truncate
    )
    if line_count > previous:
        update_cursor(conn, name, line_count)
    return PeekResult(entries=entries, cursor=max(line_count, previous), previous_cursor=previous)
