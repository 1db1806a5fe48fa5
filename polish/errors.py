"""Error kinds raised by the polish module."""

from __future__ import annotations


class PolishError(Exception):
    """Base class for polish failures."""


class CompletionError(PolishError):
    """The completion endpoint failed or returned an unusable response."""

    GENERIC_MESSAGE = "API request failed"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.GENERIC_MESSAGE)
        self.status_code = status_code


class ValidationError(PolishError):
    """Input rejected before any network call."""


class StorageError(PolishError):
    """A persisted collaborator could not be written."""


class RevisionFailedError(PolishError):
    """All revision attempts failed."""

    def __init__(self, attempts: int, cause: Exception):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Revision failed after {attempts} attempts: {cause}. "
            "Your draft was backed up before polishing; restore it from the "
            "draft backup and try again."
        )
