"""The (repository, branch) scope tasks and agents are grouped by."""

from __future__ import annotations

import logging
import subprocess
from typing import NamedTuple

from june.errors import ValidationError

log = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


class Scope(NamedTuple):
    repo_path: str
    branch: str


def _git(args: list[str], cwd: str | None) -> str:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError:
        log.debug("git binary not found")
        return ""
    except subprocess.CalledProcessError as e:
        log.debug("git %s failed: %s", " ".join(args), e.stderr.strip())
        return ""
    return proc.stdout.strip()


def repo_root(cwd: str | None = None) -> str:
    """Top-level directory of the enclosing git repository, or ''."""
    return _git(["rev-parse", "--show-toplevel"], cwd)


def branch_name(cwd: str | None = None) -> str:
    """Current branch, or '' on a detached HEAD or outside a repository."""
    return _git(["branch", "--show-current"], cwd)


def current_scope(cwd: str | None = None) -> Scope:
    """Scope of the working directory.

    Raises ValidationError outside a git repository. A detached HEAD is
    scoped to ``main``.
    """
    root = repo_root(cwd)
    if not root:
        raise ValidationError("not in a git repository")
    return Scope(repo_path=root, branch=branch_name(cwd) or DEFAULT_BRANCH)
