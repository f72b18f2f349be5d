"""Tests for the june command line."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from june.cli import main
from june.db import connect, create_agent, get_agent
from june.errors import ValidationError
from june.scope import Scope

SCOPE = Scope("/work/repo", "main")


@pytest.fixture()
def home(tmp_path: Path) -> Path:
    return tmp_path / "june-home"


@pytest.fixture()
def invoke(home):
    """Run the CLI against an isolated home inside a fixed repo scope."""
    runner = CliRunner()

    def _invoke(*args: str, scope: Scope | None = SCOPE):
        with patch("june.cli.current_scope", return_value=scope):
            return runner.invoke(main, ["--home", str(home), *args])

    return _invoke


def _json(result):
    return json.loads(result.stdout)


# ---------------------------------------------------------------------------
# JSON error handling (group-level)
# ---------------------------------------------------------------------------


def test_unknown_option_is_json_error(invoke):
    result = invoke("task", "list", "--no-such-flag")
    assert result.exit_code != 0
    payload = _json(result)
    assert payload["ok"] is False
    assert "no-such-flag" in payload["error"].lower() or "no such option" in payload["error"]


def test_unknown_command_suggests_close_match(invoke):
    result = invoke("peak", "alpha")
    assert result.exit_code != 0
    assert "Did you mean: peek" in _json(result)["error"]


def test_domain_error_is_json(invoke):
    result = invoke("task", "update", "t-00000", "--status", "closed")
    assert result.exit_code == 1
    assert _json(result) == {"ok": False, "error": "task 't-00000' not found"}


def test_outside_repository_is_json_error(home):
    runner = CliRunner()
    with patch("june.cli.current_scope", side_effect=ValidationError("not in a git repository")):
        result = runner.invoke(main, ["--home", str(home), "task", "list"])
    assert result.exit_code == 1
    assert _json(result)["error"] == "not in a git repository"


def test_home_from_environment(tmp_path):
    runner = CliRunner()
    env_home = tmp_path / "from-env"
    with patch("june.cli.current_scope", return_value=SCOPE):
        result = runner.invoke(main, ["task", "create", "x"], env={"JUNE_HOME": str(env_home)})
    assert result.exit_code == 0, result.output
    assert (env_home / "june.db").exists()


def test_db_path_env_used_alongside_home_env(tmp_path):
    runner = CliRunner()
    env = {"JUNE_HOME": str(tmp_path / "home"), "JUNE_DB_PATH": str(tmp_path / "custom.db")}
    result = runner.invoke(main, ["agents", "--all"], env=env)
    assert result.exit_code == 0, result.output
    assert _json(result) == []
    assert (tmp_path / "custom.db").exists()
    assert not (tmp_path / "home" / "june.db").exists()


# ---------------------------------------------------------------------------
# task
# ---------------------------------------------------------------------------


def test_task_create_and_list(invoke):
    result = invoke("task", "create", "Ship parser", "Write docs", "--note", "v1")
    assert result.exit_code == 0, result.output
    created = _json(result)
    assert [t["title"] for t in created] == ["Ship parser", "Write docs"]
    assert all(t["notes"] == "v1" and t["status"] == "open" for t in created)
    assert all(t["repo_path"] == "/work/repo" and t["branch"] == "main" for t in created)
    assert len({t["id"] for t in created}) == 2

    listed = _json(invoke("task", "list"))
    assert {t["id"] for t in listed} == {t["id"] for t in created}
    assert all(t["child_count"] == 0 for t in listed)


def test_task_list_is_scoped(invoke):
    invoke("task", "create", "main work")
    invoke("task", "create", "feature work", scope=Scope("/work/repo", "feature"))
    assert [t["title"] for t in _json(invoke("task", "list"))] == ["main work"]


def test_task_tree(invoke):
    parent = _json(invoke("task", "create", "Parent"))[0]
    invoke("task", "create", "Child A", "--parent", parent["id"])
    invoke("task", "create", "Child B", "--parent", parent["id"])

    roots = _json(invoke("task", "list"))
    assert [(t["title"], t["child_count"]) for t in roots] == [("Parent", 2)]

    tree = _json(invoke("task", "list", parent["id"]))
    assert tree["deleted"] is False
    assert [c["title"] for c in tree["children"]] == ["Child A", "Child B"]


def test_task_create_with_bad_parent(invoke):
    result = invoke("task", "create", "Orphan", "--parent", "t-zzzzz")
    assert result.exit_code == 1
    assert _json(result)["ok"] is False
    assert _json(invoke("task", "list")) == []


def test_task_update(invoke):
    task_id = _json(invoke("task", "create", "Draft"))[0]["id"]
    result = invoke("task", "update", task_id, "--status", "in_progress", "--note", "halfway")
    assert result.exit_code == 0, result.output
    row = _json(result)
    assert (row["status"], row["notes"], row["title"]) == ("in_progress", "halfway", "Draft")

    row = _json(invoke("task", "update", task_id, "--title", "Final"))
    assert (row["status"], row["notes"], row["title"]) == ("in_progress", "halfway", "Final")


def test_task_update_requires_a_field(invoke):
    task_id = _json(invoke("task", "create", "Draft"))[0]["id"]
    result = invoke("task", "update", task_id)
    assert result.exit_code != 0
    assert "Nothing to update" in _json(result)["error"]


def test_task_update_rejects_unknown_status(invoke):
    task_id = _json(invoke("task", "create", "Draft"))[0]["id"]
    result = invoke("task", "update", task_id, "--status", "done")
    assert result.exit_code != 0
    assert _json(result)["ok"] is False


def test_task_delete_cascades(invoke):
    parent = _json(invoke("task", "create", "Parent"))[0]["id"]
    child = _json(invoke("task", "create", "Child", "--parent", parent))[0]["id"]

    result = invoke("task", "delete", parent)
    assert result.exit_code == 0, result.output
    payload = _json(result)
    assert payload["ok"] is True
    assert payload["deleted"] == [parent, child]

    assert _json(invoke("task", "list")) == []
    assert _json(invoke("task", "list", child))["deleted"] is True
    assert _json(invoke("task", "delete", parent))["ok"] is False


# ---------------------------------------------------------------------------
# agents / peek / logs
# ---------------------------------------------------------------------------


def _transcript(path: Path, *texts: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        for text in texts:
            payload = {"type": "message", "role": "assistant", "content": [{"text": text}]}
            f.write(json.dumps({"type": "response_item", "payload": payload}) + "\n")
    return path


def _register(home: Path, name: str, session_file: Path | str = "", **kwargs) -> None:
    with connect(home / "june.db") as conn:
        create_agent(
            conn, name=name, external_id=f"{name}-thread", session_file=str(session_file), **kwargs
        )


def test_agents_scoped_and_all(invoke, home):
    _register(home, "here", repo_path="/work/repo", branch="main")
    _register(home, "there", repo_path="/other", branch="main")

    assert [a["name"] for a in _json(invoke("agents"))] == ["here"]
    assert {a["name"] for a in _json(invoke("agents", "--all"))} == {"here", "there"}


def test_peek_json_advances_cursor(invoke, home, tmp_path):
    session = _transcript(tmp_path / "s.jsonl", "one", "two")
    _register(home, "alpha", session)

    first = _json(invoke("peek", "alpha"))
    assert first["name"] == "alpha"
    assert (first["previous_cursor"], first["cursor"]) == (0, 2)
    assert first["entries"] == [
        {"type": "message", "content": "one"},
        {"type": "message", "content": "two"},
    ]

    assert _json(invoke("peek", "alpha"))["entries"] == []

    _transcript(session, "three")
    assert [e["content"] for e in _json(invoke("peek", "alpha"))["entries"]] == ["three"]


def test_peek_text(invoke, home, tmp_path):
    _register(home, "alpha", _transcript(tmp_path / "s.jsonl", "hello"))
    assert invoke("peek", "alpha", "--text").stdout == "hello\n\n\n"
    assert invoke("peek", "alpha", "--text").stdout == "(no new output)\n"


def test_logs_does_not_advance_cursor(invoke, home, tmp_path):
    _register(home, "alpha", _transcript(tmp_path / "s.jsonl", "one", "two"))

    for _ in range(2):
        payload = _json(invoke("logs", "alpha"))
        assert [e["content"] for e in payload["entries"]] == ["one", "two"]
    with connect(home / "june.db") as conn:
        assert get_agent(conn, "alpha")["cursor"] == 0


def test_logs_text_empty(invoke, home, tmp_path):
    empty = tmp_path / "empty.jsonl"
    empty.write_text("")
    _register(home, "alpha", empty)
    assert invoke("logs", "alpha", "--text").stdout == "(no output)\n"


def test_peek_unknown_agent(invoke):
    result = invoke("peek", "ghost")
    assert result.exit_code == 1
    assert _json(result) == {"ok": False, "error": "agent 'ghost' not found"}


def test_peek_missing_session(invoke, home):
    _register(home, "alpha")
    result = invoke("peek", "alpha")
    assert result.exit_code == 1
    assert "alpha-thread" in _json(result)["error"]
