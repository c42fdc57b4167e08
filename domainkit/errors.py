"""
Errors raised or recorded while executing a unit of work.
"""

from typing import Optional


class DomainKitError(Exception):
    """Base class for unit of work errors."""


class HandlerInvocationFailed(DomainKitError):
    """
    A domain event handler failed.

    Attributes:
        event_type: Type tag of the event being handled
        handler_type: Name of the handler that failed
        cause: The exception raised by the handler
    """

    def __init__(self, event_type: str, handler_type: str, cause: BaseException):
        super().__init__(
            f"Handler {handler_type} failed for event {event_type}: {cause!r}"
        )
        self.event_type = event_type
        self.handler_type = handler_type
        self.cause = cause


class PreCommitHandlerFailed(HandlerInvocationFailed):
    """A pre-commit handler failed; the unit of work is rolled back."""


class PostCommitHandlerFailed(HandlerInvocationFailed):
    """A post-commit handler failed; recorded, the commit stands."""


class CommitFailed(DomainKitError):
    """The persistence context could not commit pending changes."""


class RollbackFailed(DomainKitError):
    """
    Discarding pending changes failed.

    Attributes:
        original: The failure that triggered the rollback, if any
    """

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original
