from __future__ import annotations


class TimelineError(Exception):
    pass


class StructuralEditError(TimelineError, ValueError):
    """A disallowed structural edit, e.g. deleting the first or only section."""


class SectionNotFoundError(TimelineError, LookupError):
    pass


class RecordNotFoundError(TimelineError, LookupError):
    def __init__(self, song_id: str, message: str | None = None) -> None:
        super().__init__(message or f"No current record for '{song_id}'. Create it first.")
        self.song_id = song_id


class RecordConflictError(TimelineError):
    def __init__(self, song_id: str, message: str | None = None) -> None:
        super().__init__(message or f"A current record for '{song_id}' already exists. Update it instead.")
        self.song_id = song_id


class StorageError(TimelineError):
    """The storage backend failed to read, write, list or rename a slot."""

    def __init__(self, operation: str, name: str, reason: str) -> None:
        super().__init__(f"Storage {operation} failed for '{name}': {reason}")
        self.operation = operation
        self.name = name
        self.reason = reason
