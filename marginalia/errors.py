"""Exception hierarchy for the annotation engine."""

from typing import Optional


class MarginaliaError(Exception):
    """Base class for errors surfaced to the user."""


class ValidationError(MarginaliaError):
    """Input rejected on the client before any request is made."""


class PermissionDenied(MarginaliaError):
    """The current identity lacks the capability for this action."""


class SyncError(MarginaliaError):
    """A backend call failed; message is the server's when it sent one."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message
