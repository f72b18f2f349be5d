"""Exception hierarchy shared by the store, session locators and the CLI.

Functions raise these (not ClickException) so they can be used outside
the CLI; ``june.cli`` turns them into JSON error objects.
"""

from __future__ import annotations


class JuneError(Exception):
    """Base class for every error june reports to a caller."""


class NotFoundError(JuneError, LookupError):
    def __init__(self, entity: str, key: str, message: str | None = None):
        super().__init__(message or f"{entity} '{key}' not found")
        self.entity = entity
        self.key = key


class ValidationError(JuneError, ValueError):
    """Rejected input: empty title, unknown status, bad parent, unsafe id."""


class ConflictError(JuneError):
    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} '{key}' already exists")
        self.entity = entity
        self.key = key


class StorageError(JuneError):
    """The database could not be opened or a statement failed.

    Always raised ``from`` the underlying ``sqlite3.Error``.
    """

    def __init__(self, operation: str, detail: str):
        super().__init__(f"{operation}: {detail}")
        self.operation = operation


class SessionNotFoundError(NotFoundError):
    """No transcript file could be located for an agent."""

    def __init__(self, key: str, message: str | None = None):
        super().__init__("session file", key, message)
