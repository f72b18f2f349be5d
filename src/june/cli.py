from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from june import __version__
from june.config import JuneConfig, load_config
from june.db import (
    VALID_TASK_STATUSES,
    TaskUpdate,
    connect,
    count_children,
    create_task,
    delete_task,
    get_task_tree,
    list_agents,
    list_agents_by_scope,
    list_root_tasks,
    update_task,
)
from june.errors import JuneError
from june.reader import logs as read_logs
from june.reader import peek as read_peek
from june.scope import current_scope
from june.taskid import generate_unique_task_id
from june.transcripts import entry_to_dict, format_entries

log = logging.getLogger(__name__)


class _JsonAwareGroup(click.Group):
    """Group that reports every failure as a JSON error object on stdout.

    Click usage errors and june's own errors (missing task, invalid
    status, unreadable database, ...) both become ``{"ok": false, ...}``
    with exit code 1, so callers only ever parse JSON.
    """

    def resolve_command(self, ctx, args):  # type: ignore[override]
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if args:
                import difflib

                cmd_name = args[0]
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=2, cutoff=0.5
                )
                hint = f" Did you mean: {', '.join(matches)}?" if matches else ""
                raise click.UsageError(f"No such command '{cmd_name}'.{hint}") from None
            raise

    def main(self, args=None, standalone_mode=True, **kwargs):  # type: ignore[override]
        try:
            rv = super().main(args=args, standalone_mode=False, **kwargs)
            if standalone_mode:
                raise SystemExit(rv or 0)
            return rv
        except (click.ClickException, JuneError) as e:
            message = e.format_message() if isinstance(e, click.ClickException) else str(e)
            click.echo(json.dumps({"ok": False, "error": message}))
            code = getattr(e, "exit_code", 1)
            if standalone_mode:
                raise SystemExit(code) from None
            return code
        except click.Abort:
            if standalone_mode:
                click.echo("Aborted!", err=True)
                raise SystemExit(1) from None
            raise


def _config(ctx: click.Context) -> JuneConfig:
    return ctx.find_root().obj


def _emit(payload: object) -> None:
    click.echo(json.dumps(payload))


@click.group(cls=_JsonAwareGroup)
@click.version_option(version=__version__)
@click.option(
    "--home",
    envvar="JUNE_HOME",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="State directory (default: ~/.june).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, home: Path | None, verbose: bool):
    """Track spawned coding agents and persistent tasks.

    \b
    Quick start:
      june task create "Ship the parser"        Create a task in this repo/branch
      june task list                            Show tasks for this repo/branch
      june peek NAME                            New output from an agent
      june logs NAME                            Full transcript of an agent
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    ctx.obj = load_config(home)


# -- tasks --


@main.group(cls=_JsonAwareGroup)
def task():
    """Create, list, update, and delete persistent tasks."""


@task.command("create")
@click.argument("titles", nargs=-1, required=True)
@click.option("--parent", "parent_id", default=None, help="Parent task ID.")
@click.option("--note", default=None, help="Note to attach to each created task.")
@click.pass_context
def task_create(
    ctx: click.Context,
    titles: tuple[str, ...],
    parent_id: str | None,
    note: str | None,
):
    """Create one or more tasks in the current repo and branch."""
    scope = current_scope()
    created = []
    with connect(_config(ctx).db_path) as conn:
        for title in titles:
            task_id = generate_unique_task_id(conn)
            created.append(
                create_task(
                    conn,
                    task_id=task_id,
                    title=title,
                    repo_path=scope.repo_path,
                    branch=scope.branch,
                    parent_id=parent_id,
                    notes=note or None,
                )
            )
            log.debug("Created task %s", task_id)
    _emit(created)


@task.command("list")
@click.argument("task_id", required=False)
@click.pass_context
def task_list(ctx: click.Context, task_id: str | None):
    """List root tasks in this scope, or show one task with its children."""
    with connect(_config(ctx).db_path) as conn:
        if task_id is not None:
            tree = get_task_tree(conn, task_id)
            _emit({**tree, "deleted": tree["deleted_at"] is not None})
            return
        scope = current_scope()
        rows = [
            {**row, "child_count": count_children(conn, row["id"])}
            for row in list_root_tasks(conn, scope.repo_path, scope.branch)
        ]
    _emit(rows)


@task.command("update")
@click.argument("task_id")
@click.option("--status", type=click.Choice(sorted(VALID_TASK_STATUSES)), default=None)
@click.option("--note", default=None, help="Replace the task's note.")
@click.option("--title", default=None, help="Rename the task.")
@click.pass_context
def task_update(
    ctx: click.Context,
    task_id: str,
    status: str | None,
    note: str | None,
    title: str | None,
):
    """Update a task's status, note, or title."""
    if status is None and note is None and title is None:
        raise click.UsageError("Nothing to update. Pass --status, --note, or --title.")
    with connect(_config(ctx).db_path) as conn:
        row = update_task(conn, task_id, TaskUpdate(title=title, status=status, notes=note))
    _emit(row)


@task.command("delete")
@click.argument("task_id")
@click.pass_context
def task_delete(ctx: click.Context, task_id: str):
    """Delete a task and all of its subtasks."""
    with connect(_config(ctx).db_path) as conn:
        deleted = delete_task(conn, task_id)
    _emit({"ok": True, "deleted": deleted})


# -- agents --


@main.command("agents")
@click.option("--all", "show_all", is_flag=True, help="Include agents from every repository.")
@click.pass_context
def agents_cmd(ctx: click.Context, show_all: bool):
    """List spawned agents for this repo and branch."""
    with connect(_config(ctx).db_path) as conn:
        if show_all:
            rows = list_agents(conn)
        else:
            scope = current_scope()
            rows = list_agents_by_scope(conn, scope.repo_path, scope.branch)
    _emit(rows)


@main.command()
@click.argument("name")
@click.option("--text", "as_text", is_flag=True, help="Plain text instead of JSON.")
@click.pass_context
def peek(ctx: click.Context, name: str, as_text: bool):
    """Show output since the last peek and advance the cursor."""
    with connect(_config(ctx).db_path) as conn:
        result = read_peek(conn, name, _config(ctx))
    if as_text:
        click.echo(format_entries(result.entries) if result.entries else "(no new output)")
        return
    _emit(
        {
            "name": name,
            "cursor": result.cursor,
            "previous_cursor": result.previous_cursor,
            "entries": [entry_to_dict(entry) for entry in result.entries],
        }
    )


@main.command()
@click.argument("name")
@click.option("--text", "as_text", is_flag=True, help="Plain text instead of JSON.")
@click.pass_context
def logs(ctx: click.Context, name: str, as_text: bool):
    """Show the full transcript without advancing the cursor."""
    with connect(_config(ctx).db_path) as conn:
        entries = read_logs(conn, name, _config(ctx))
    if as_text:
        click.echo(format_entries(entries) if entries else "(no output)")
        return
    _emit({"name": name, "entries": [entry_to_dict(entry) for entry in entries]})
