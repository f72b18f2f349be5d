"""Canonical filesystem paths for june state."""

from __future__ import annotations

import os
from pathlib import Path

_env_home = os.environ.get("JUNE_HOME")
JUNE_HOME = Path(_env_home).expanduser() if _env_home else Path.home() / ".june"


def db_path_from_env() -> Path | None:
    """``$JUNE_DB_PATH`` as a path, read at call time, or None when unset."""
    value = os.environ.get("JUNE_DB_PATH")
    return Path(value).expanduser() if value else None


DEFAULT_DB_PATH = db_path_from_env() or JUNE_HOME / "june.db"
