"""Shared test fixtures: a template DB for fast per-test isolation."""

import shutil
import sqlite3
import tempfile
from pathlib import Path

import pytest

from june.config import JuneConfig, load_config
from june.db import get_connection


@pytest.fixture(autouse=True)
def _clean_june_env(monkeypatch):
    """Keep the caller's JUNE_HOME / JUNE_DB_PATH out of every test."""
    monkeypatch.delenv("JUNE_HOME", raising=False)
    monkeypatch.delenv("JUNE_DB_PATH", raising=False)


@pytest.fixture(scope="session")
def _db_template_path() -> Path:
    """Create a single template DB with the full schema.

    Copying this file is cheaper than running schema creation and
    migrations in every test function.
    """
    fd, path_str = tempfile.mkstemp(suffix=".db")
    path = Path(path_str)
    try:
        conn = get_connection(path)
        conn.close()
        yield path
    finally:
        path.unlink(missing_ok=True)


@pytest.fixture()
def db_conn(tmp_path: Path, _db_template_path: Path) -> sqlite3.Connection:
    """Per-test DB connection with the schema pre-loaded."""
    db_path = tmp_path / "test.db"
    shutil.copy2(_db_template_path, db_path)
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def db_conn_path(tmp_path: Path, _db_template_path: Path) -> tuple[sqlite3.Connection, Path]:
    """Per-test DB connection + path (for tests that re-open the DB)."""
    db_path = tmp_path / "test.db"
    shutil.copy2(_db_template_path, db_path)
    conn = get_connection(db_path)
    try:
        yield conn, db_path
    finally:
        conn.close()


@pytest.fixture()
def june_config(tmp_path: Path) -> JuneConfig:
    """Config rooted in an isolated june home."""
    home = tmp_path / "june-home"
    home.mkdir()
    return load_config(home)
