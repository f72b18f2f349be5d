"""Locating agent session files on disk.

Codex writes ``<codex_home>/sessions/YYYY/MM/DD/rollout-<timestamp>-<id>.jsonl``.
Gemini output is captured to ``<gemini_sessions_dir>/<session_id>.jsonl``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import date
from pathlib import Path

from june.config import JuneConfig
from june.db import AgentKind, normalize_agent_kind
from june.errors import SessionNotFoundError, ValidationError

log = logging.getLogger(__name__)

SESSION_SUFFIX = ".jsonl"


def _matches(filename: str, external_id: str) -> bool:
    return external_id in filename and filename.endswith(SESSION_SUFFIX)


def _find_in_dir(directory: Path, external_id: str) -> Path | None:
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return None
    for name in names:
        if _matches(name, external_id) and (directory / name).is_file():
            return directory / name
    return None


def find_codex_session(codex_home: Path, external_id: str, today: date | None = None) -> Path:
    """Find a Codex rollout file by thread id.

    Today's date partition is checked first; only if the file is not there
    is the whole sessions tree walked.
    """
    if not external_id:
        raise ValidationError("codex thread id cannot be empty")
    sessions_dir = codex_home / "sessions"
    today = today or date.today()
    today_dir = sessions_dir / f"{today:%Y}" / f"{today:%m}" / f"{today:%d}"
    found = _find_in_dir(today_dir, external_id)
    if found is not None:
        return found

    log.debug("Codex session %s not in %s, scanning %s", external_id, today_dir, sessions_dir)
    for dirpath, dirnames, filenames in os.walk(sessions_dir):
        dirnames.sort()
        for name in sorted(filenames):
            if _matches(name, external_id):
                return Path(dirpath) / name
    raise SessionNotFoundError(external_id)


def validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the sessions directory."""
    if not session_id or "/" in session_id or "\\" in session_id or ".." in session_id:
        raise ValidationError(
            f"invalid session ID '{session_id}': must not contain path separators "
            "or traversal sequences"
        )
    return session_id


def gemini_session_path(sessions_dir: Path, session_id: str) -> Path:
    """Where the transcript for ``session_id`` is (or will be) written."""
    return sessions_dir / f"{validate_session_id(session_id)}{SESSION_SUFFIX}"


def find_gemini_session(sessions_dir: Path, session_id: str) -> Path:
    path = gemini_session_path(sessions_dir, session_id)
    if not path.is_file():
        raise SessionNotFoundError(session_id)
    return path


LOCATORS: dict[AgentKind, Callable[[JuneConfig, str], Path]] = {
    AgentKind.CODEX: lambda config, external_id: find_codex_session(
        config.codex_home, external_id
    ),
    AgentKind.GEMINI: lambda config, external_id: find_gemini_session(
        config.gemini_sessions_dir, external_id
    ),
}


def find_session_file(config: JuneConfig, kind: str | None, external_id: str) -> Path:
    """Locate the transcript for an agent of the given kind."""
    return LOCATORS[normalize_agent_kind(kind)](config, external_id)
