from __future__ import annotations


class NewsDeskError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(NewsDeskError):
    """A required credential or setting is missing. Nothing should be attempted."""


class FetchError(NewsDeskError):
    """A feed or page could not be retrieved."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None, blocked: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.blocked = blocked


class FetchTimeout(FetchError):
    retryable = True


class GenerationError(NewsDeskError):
    """The model call failed or its response did not hold a usable article."""

    retryable = False


class GenerationTimeout(GenerationError):
    retryable = True


class PersistenceError(NewsDeskError):
    """A row store write did not complete; the draft was not durably saved."""


class DomainError(NewsDeskError):
    """A moderation transition was requested on a missing or wrong-state row."""


class NotFoundError(DomainError):
    pass
