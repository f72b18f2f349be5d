import re

import pytest

from june.db import create_task, delete_task
from june.errors import JuneError
from june.taskid import MAX_ID_ATTEMPTS, generate_task_id, generate_unique_task_id


def test_generated_id_shape():
    for _ in range(50):
        assert re.fullmatch(r"t-[0-9a-f]{5}", generate_task_id())


def test_unique_id_skips_taken_ids(db_conn):
    create_task(db_conn, task_id="t-aaaaa", title="taken", repo_path="/r", branch="main")
    candidates = iter(["t-aaaaa", "t-bbbbb"])
    assert generate_unique_task_id(db_conn, lambda: next(candidates)) == "t-bbbbb"


def test_deleted_task_ids_are_not_reused(db_conn):
    create_task(db_conn, task_id="t-aaaaa", title="gone", repo_path="/r", branch="main")
    delete_task(db_conn, "t-aaaaa")
    candidates = iter(["t-aaaaa", "t-ccccc"])
    assert generate_unique_task_id(db_conn, lambda: next(candidates)) == "t-ccccc"


def test_gives_up_after_max_attempts(db_conn):
    create_task(db_conn, task_id="t-aaaaa", title="taken", repo_path="/r", branch="main")
    calls = []

    def always_taken():
        calls.append(1)
        return "t-aaaaa"

    with pytest.raises(JuneError, match="failed to generate unique task ID"):
        generate_unique_task_id(db_conn, always_taken)
    assert len(calls) == MAX_ID_ATTEMPTS
