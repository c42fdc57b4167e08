"""
Domain Event Handlers

Defines the base class for domain event handlers and the registration record
the handler registry keeps for each of them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Type

from .di_container import Resolver
from .events import DomainEvent


class DomainEventHandler(ABC):
    """
    Base class for domain event handlers.

    A handler declares the event class it handles and whether it runs before
    the commit (the default) or after it. Its dependencies are constructor
    parameters, injected by the resolver at invocation time.

    Usage:
        class SendWelcomeEmail(DomainEventHandler):
            handles = EmployeeHired
            post_commit = True

            def __init__(self, mailer: Mailer):
                self.mailer = mailer

            async def handle(self, event: EmployeeHired) -> None:
                await self.mailer.send(event.name, "Welcome!")
    """
    handles: ClassVar[Type[DomainEvent]]
    post_commit: ClassVar[bool] = False

    @abstractmethod
    async def handle(self, event: Any) -> None:
        """
        Handle an event.

        Args:
            event: The event to handle

        Raises:
            Exception: If handling fails
        """


HandlerInvoker = Callable[[DomainEvent, Resolver], Awaitable[None]]


@dataclass(frozen=True)
class HandlerRegistration:
    """
    A handler bound to one event type tag.

    Attributes:
        event_type: Type tag of the handled event
        post_commit: True when the handler runs after the commit
        handler_name: Name used in logs and errors
        invoke: Coroutine function performing the handling
    """
    event_type: str
    post_commit: bool
    handler_name: str
    invoke: HandlerInvoker
