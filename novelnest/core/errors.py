from __future__ import annotations


class NovelNestError(Exception):
    """Base class for every error raised by the client core."""

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.code = code


class AuthRequired(NovelNestError):
    """The action needs a signed-in user and there is no active session."""


class Forbidden(NovelNestError):
    """The signed-in user's role lacks the capability for the action."""


class ValidationError(NovelNestError):
    """Input rejected locally; no remote call was made."""


class ConflictError(NovelNestError):
    """A unique key already exists remotely (duplicate insert)."""


class NotFound(NovelNestError):
    pass


class RemoteFailure(NovelNestError):
    """Network or query failure reported by the backend platform."""

    def __init__(self, message: str = "", *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
