"""Runtime configuration for june.

Everything that depends on the home directory is resolved once into a
``JuneConfig`` and passed to the store, the session locators and the
transcript reader. An optional ``config.toml`` in the june home can
override the defaults::

    db_path = "~/work/june.db"
    codex_home = "~/.june/codex"
    gemini_sessions_dir = "~/.june/gemini/sessions"
    output_truncate = 200
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from june import paths

log = logging.getLogger(__name__)

CONFIG_FILENAME = "config.toml"
DEFAULT_OUTPUT_TRUNCATE = 200


@dataclass(frozen=True)
class JuneConfig:
    home: Path
    db_path: Path
    codex_home: Path
    gemini_sessions_dir: Path
    output_truncate: int = DEFAULT_OUTPUT_TRUNCATE


def _read_config_file(path: Path) -> dict[str, Any]:
    """Parse ``config.toml``, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        log.warning("Failed to parse %s, using defaults", path, exc_info=True)
        return {}


def _path_setting(raw: dict[str, Any], key: str, default: Path) -> Path:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        return default
    return Path(value).expanduser()


def load_config(home: Path | None = None) -> JuneConfig:
    """Build the effective configuration.

    ``home`` defaults to ``june.paths.JUNE_HOME``. The database path is
    ``db_path`` from ``config.toml`` if set, then ``$JUNE_DB_PATH``, then
    ``june.db`` inside the home.
    """
    if home is None:
        home = paths.JUNE_HOME
        default_db = paths.DEFAULT_DB_PATH
    else:
        home = Path(home).expanduser()
        default_db = paths.db_path_from_env() or home / "june.db"

    raw = _read_config_file(home / CONFIG_FILENAME)

    truncate = raw.get("output_truncate", DEFAULT_OUTPUT_TRUNCATE)
    if not isinstance(truncate, int) or isinstance(truncate, bool) or truncate <= 0:
        log.warning("config.toml: output_truncate must be a positive integer, got %r", truncate)
        truncate = DEFAULT_OUTPUT_TRUNCATE

    return JuneConfig(
        home=home,
        db_path=_path_setting(raw, "db_path", default_db),
        codex_home=_path_setting(raw, "codex_home", home / "codex"),
        gemini_sessions_dir=_path_setting(
            raw, "gemini_sessions_dir", home / "gemini" / "sessions"
        ),
        output_truncate=truncate,
    )
