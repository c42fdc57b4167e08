"""
Handler Registry Module

Manages registration of domain event handlers and their invocation in the
pre-commit and post-commit phases of a unit of work.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .di_container import DIContainer, Resolver
from .errors import PostCommitHandlerFailed, PreCommitHandlerFailed
from .events import DomainEvent, event_type_of
from .handlers import DomainEventHandler, HandlerRegistration

logger = logging.getLogger(__name__)


@dataclass
class HandlerInvocationResult:
    """Result of invoking post-commit handlers for an event."""
    success_count: int = 0
    failed_count: int = 0
    failures: List[PostCommitHandlerFailed] = field(default_factory=list)


class DomainEventHandlerRegistry:
    """
    Registry for domain event handlers, keyed by event type tag.

    Pre-commit and post-commit handlers are kept in separate buckets. Within a
    bucket, registration order is invocation order. Registering the same
    handler twice makes it run twice.

    The registry is populated during setup and only read during dispatch, so
    one instance can be shared by any number of units of work.
    """

    def __init__(self, resolver: Optional[Resolver] = None):
        """
        Initialize the handler registry.

        Args:
            resolver: Default resolver for building handlers. An empty
                DIContainer is used when none is given.
        """
        self._resolver = resolver if resolver is not None else DIContainer()
        self._pre_commit: Dict[str, List[HandlerRegistration]] = {}
        self._post_commit: Dict[str, List[HandlerRegistration]] = {}

    def register(self, handler_cls: Type[DomainEventHandler]) -> HandlerRegistration:
        """
        Register a handler class for the event class it handles.

        Args:
            handler_cls: DomainEventHandler subclass

        Returns:
            The registration that was added

        Raises:
            TypeError: If the class does not declare the event it handles
        """
        event_cls = getattr(handler_cls, 'handles', None)
        if not (isinstance(event_cls, type) and issubclass(event_cls, DomainEvent)):
            raise TypeError(
                f"{handler_cls.__name__}.handles must be a DomainEvent subclass"
            )

        async def invoke(event: DomainEvent, resolver: Resolver) -> None:
            # Prefer an explicit registration so handlers can be singletons.
            handler = resolver.try_resolve(handler_cls)
            if handler is None:
                handler = resolver.create_instance(handler_cls)
            await handler.handle(event)

        registration = HandlerRegistration(
            event_type=event_type_of(event_cls),
            post_commit=bool(handler_cls.post_commit),
            handler_name=handler_cls.__name__,
            invoke=invoke,
        )
        self._add(registration)
        return registration

    def subscribe(
        self,
        event_cls: Type[DomainEvent],
        handler: Callable[[Any], Any],
        post_commit: bool = False,
        name: Optional[str] = None,
    ) -> HandlerRegistration:
        """
        Register a plain function as a handler.

        Args:
            event_cls: Event class to handle
            handler: Sync or async function taking the event
            post_commit: Run after the commit instead of before it
            name: Name used in logs, defaults to the function name

        Returns:
            The registration that was added
        """
        async def invoke(event: DomainEvent, resolver: Resolver) -> None:
            result = handler(event)
            if inspect.isawaitable(result):
                await result

        registration = HandlerRegistration(
            event_type=event_type_of(event_cls),
            post_commit=post_commit,
            handler_name=name or getattr(handler, '__name__', repr(handler)),
            invoke=invoke,
        )
        self._add(registration)
        return registration

    def register_from_module(self, module: ModuleType) -> int:
        """
        Register every concrete handler class defined in a module.

        Classes are registered in the order they are defined.

        Args:
            module: The module to scan

        Returns:
            Number of handlers registered
        """
        count = 0
        for obj in vars(module).values():
            if not isinstance(obj, type) or obj.__module__ != module.__name__:
                continue
            if not issubclass(obj, DomainEventHandler) or inspect.isabstract(obj):
                continue
            if getattr(obj, 'handles', None) is None:
                continue
            self.register(obj)
            count += 1

        logger.info(f"Registered {count} handlers from module {module.__name__}")
        return count

    def handlers_for(self, event_type: str, post_commit: bool = False) -> Tuple[HandlerRegistration, ...]:
        """
        Get the registrations for an event type tag in one phase.

        Args:
            event_type: Event type tag
            post_commit: Which phase to look up

        Returns:
            Registrations in invocation order
        """
        bucket = self._post_commit if post_commit else self._pre_commit
        return tuple(bucket.get(event_type, ()))

    def handler_count(self, event_type: str, post_commit: bool = False) -> int:
        return len(self.handlers_for(event_type, post_commit))

    async def dispatch_pre_commit(self, event: DomainEvent, scope: Optional[Resolver] = None) -> None:
        """
        Invoke the pre-commit handlers of an event, stopping at the first failure.

        Args:
            event: Event to handle
            scope: Resolver for this unit of work, defaults to the registry's

        Raises:
            PreCommitHandlerFailed: If a handler fails. Remaining handlers
                are not invoked.
        """
        resolver = scope if scope is not None else self._resolver
        registrations = self._pre_commit.get(event.event_type, [])

        if not registrations:
            logger.debug(f"No pre-commit handlers for event {event.event_type}")
            return

        for registration in registrations:
            logger.debug(
                f"Handling event {event.event_type} with pre-commit handler {registration.handler_name}"
            )
            try:
                await registration.invoke(event, resolver)
            except Exception as e:
                logger.error(
                    f"Pre-commit handler {registration.handler_name} failed for event "
                    f"{event.event_type} (ID: {event.event_id}): {e}",
                    exc_info=True
                )
                raise PreCommitHandlerFailed(event.event_type, registration.handler_name, e) from e

    async def dispatch_post_commit(
        self, event: DomainEvent, scope: Optional[Resolver] = None
    ) -> HandlerInvocationResult:
        """
        Invoke the post-commit handlers of an event.

        A failing handler is logged and recorded, and the remaining handlers
        still run. Cancellation inside a handler counts as that handler's
        failure.

        Args:
            event: Event to handle
            scope: Resolver for this unit of work, defaults to the registry's

        Returns:
            HandlerInvocationResult with success/failure counts and failures
        """
        resolver = scope if scope is not None else self._resolver
        registrations = self._post_commit.get(event.event_type, [])
        result = HandlerInvocationResult()

        if not registrations:
            logger.debug(f"No post-commit handlers for event {event.event_type}")
            return result

        for registration in registrations:
            logger.debug(
                f"Handling event {event.event_type} with post-commit handler {registration.handler_name}"
            )
            try:
                await registration.invoke(event, resolver)
                result.success_count += 1
            except (Exception, asyncio.CancelledError) as e:
                result.failed_count += 1
                logger.error(
                    f"Post-commit handler {registration.handler_name} failed for event "
                    f"{event.event_type} (ID: {event.event_id}): {e!r}",
                    exc_info=True
                )
                result.failures.append(
                    PostCommitHandlerFailed(event.event_type, registration.handler_name, e)
                )

        if result.failed_count:
            logger.warning(
                f"Post-commit handling of event {event.event_type} finished with "
                f"{result.success_count} succeeded, {result.failed_count} failed"
            )
        return result

    def _add(self, registration: HandlerRegistration) -> None:
        bucket = self._post_commit if registration.post_commit else self._pre_commit
        bucket.setdefault(registration.event_type, []).append(registration)
        phase = "post-commit" if registration.post_commit else "pre-commit"
        logger.info(
            f"Registered {phase} handler {registration.handler_name} for event {registration.event_type}"
        )
