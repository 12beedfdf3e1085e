"""Error taxonomy shared by the catalog, lifecycle and HTTP layers."""

from __future__ import annotations

INTERNAL_ERROR_MESSAGE = "An internal server error occurred. Please try again later."


class IqpsError(Exception):
    """Base error. `public_message` is what API clients are allowed to see."""

    retryable: bool = False
    internal: bool = True

    @property
    def public_message(self) -> str:
        if self.internal:
            return INTERNAL_ERROR_MESSAGE
        return str(self)


class ValidationError(IqpsError):
    """Bad input: exam/semester strings, missing fields, file limits."""

    internal = False


class ConfigError(IqpsError):
    """Invalid or missing configuration at startup."""


class InvalidURL(IqpsError):
    """A slug could not be turned into a public URL."""


class NotFoundError(IqpsError):
    internal = False


class AuthError(IqpsError):
    internal = False


class ConsistencyError(IqpsError):
    """An id-keyed write touched more than one row (broken key assumption)."""


class StorageError(IqpsError):
    """A filesystem read/write/copy/remove failed."""


class StoreBusyError(IqpsError):
    """No database connection could be acquired before the pool timeout."""

    retryable = True
    internal = False

    def __init__(self, message: str = "The paper catalog is busy. Please retry shortly.") -> None:
        super().__init__(message)


class SearchUnavailableError(IqpsError):
    """The configured database cannot run the hybrid search."""

    retryable = True
