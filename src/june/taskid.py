"""Short task ids of the form ``t-xxxxx``."""

from __future__ import annotations

import secrets
import sqlite3
from collections.abc import Callable

from june.db import get_task
from june.errors import JuneError, NotFoundError

MAX_ID_ATTEMPTS = 10


def generate_task_id() -> str:
    """Return ``t-`` followed by 5 random hex characters (~1M ids)."""
    return "t-" + secrets.token_hex(3)[:5]


def generate_unique_task_id(
    conn: sqlite3.Connection,
    generator: Callable[[], str] = generate_task_id,
) -> str:
    """Draw ids until one is unused, giving up after MAX_ID_ATTEMPTS.

    Soft-deleted tasks keep their rows, so their ids are never reused.
    """
    for _ in range(MAX_ID_ATTEMPTS):
        candidate = generator()
        try:
            get_task(conn, candidate)
        except NotFoundError:
            return candidate
    raise JuneError(f"failed to generate unique task ID after {MAX_ID_ATTEMPTS} attempts")
