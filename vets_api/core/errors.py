from __future__ import annotations


class VetsError(Exception):
    """Base class for every domain error raised by the service layer."""


class NotFoundError(VetsError):
    """A referenced entity does not exist."""


class StorageError(VetsError):
    """A persistence call failed.

    Always raised ``from`` the underlying driver/ORM error, with a message that
    names the operation that was being attempted.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UpstreamError(VetsError):
    """GitHub (or another remote party) failed or returned something unusable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
