from __future__ import annotations


class StoryGraphError(RuntimeError):
    """Base error for story graph failures (fail fast, no silent fallback)."""


class ValidationError(StoryGraphError):
    """Malformed or incomplete chapter analysis; rejected before any write."""


class ResolutionError(StoryGraphError):
    """A relationship endpoint can neither be matched nor created."""


class SyncError(StoryGraphError):
    """The chapter merge failed and its transaction was rolled back."""

    def __init__(self, message: str, project_id: str | None = None, chapter: int | None = None):
        super().__init__(message)
        self.project_id = project_id
        self.chapter = chapter


class SyncTimeoutError(SyncError):
    """The caller's deadline expired before commit; nothing was applied."""


class ConnectivityError(StoryGraphError):
    """The backing graph store is unreachable."""


class NotFoundError(StoryGraphError):
    """A queried entity does not exist in the project."""
