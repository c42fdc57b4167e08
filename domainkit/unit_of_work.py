"""
Unit of Work Pattern

Runs a body of changes against a domain context, dispatches the domain events
raised by the touched entities before and after the commit, and guarantees
exactly one commit or one rollback per execution.
"""

import enum
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar, Union

from .context import DomainContext
from .di_container import Resolver
from .entity import EventSource
from .errors import CommitFailed, PostCommitHandlerFailed, RollbackFailed
from .events import DomainEvent
from .handler_registry import HandlerInvocationResult

logger = logging.getLogger(__name__)

TContext = TypeVar('TContext', bound=DomainContext)

Body = Callable[[TContext], Union[Awaitable[Any], Any]]


class DomainEventDelegator(Protocol):
    """Two-phase event dispatch, as provided by DomainEventHandlerRegistry."""

    async def dispatch_pre_commit(self, event: DomainEvent, scope: Optional[Resolver] = None) -> None:
        ...

    async def dispatch_post_commit(
        self, event: DomainEvent, scope: Optional[Resolver] = None
    ) -> HandlerInvocationResult:
        ...


class UnitOfWorkState(enum.Enum):
    BODY_EXECUTING = "body_executing"
    EVENTS_COLLECTED = "events_collected"
    PRE_COMMIT_DISPATCHING = "pre_commit_dispatching"
    COMMITTING = "committing"
    POST_COMMIT_DISPATCHING = "post_commit_dispatching"


@dataclass
class UnitOfWorkOptions:
    """
    Configuration for a unit of work.

    Attributes:
        raise_post_commit_failures: Raise the first post-commit handler
            failure once the post-commit phase has finished. The commit is
            not undone either way.
    """
    raise_post_commit_failures: bool = False


@dataclass
class UnitOfWorkResult:
    """Outcome of a successful execution."""
    events: Tuple[DomainEvent, ...] = ()
    post_commit_failures: List[PostCommitHandlerFailed] = field(default_factory=list)


class UnitOfWork(Generic[TContext]):
    """
    Transactional episode with two-phase domain event dispatch.

    ``execute(body)``:
    1. Runs ``body(context)``
    2. Collects the events of the entities the context reports as touched
    3. Dispatches every event to its pre-commit handlers; the first failure
       rolls everything back
    4. Commits the context
    5. Dispatches every event to its post-commit handlers; failures are
       logged and recorded, never rolled back
    6. Clears the collected events, whatever the outcome

    Pre-commit handlers that already ran are not compensated when a later
    one fails.

    Usage:
        registry = DomainEventHandlerRegistry(container)
        registry.register(SendWelcomeEmail)

        uow = UnitOfWork(registry, InMemoryDomainContext())

        async def hire(context):
            employee = Employee("E-1", "Jo")
            employee.hire()
            context.insert(employee)

        await uow.execute(hire)
    """

    def __init__(
        self,
        delegator: DomainEventDelegator,
        context: TContext,
        scope: Optional[Resolver] = None,
        options: Optional[UnitOfWorkOptions] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            delegator: Dispatches events to handlers, usually a
                DomainEventHandlerRegistry
            context: Persistence context the body works against
            scope: Resolver for handler dependencies in this unit of work.
                The delegator's own resolver is used when None.
            options: Behaviour switches, defaults to UnitOfWorkOptions()
        """
        self._delegator = delegator
        self._context = context
        self._scope = scope
        self._options = options or UnitOfWorkOptions()

    @property
    def context(self) -> TContext:
        return self._context

    async def execute(self, body: Body) -> UnitOfWorkResult:
        """
        Execute a body of changes as one transaction.

        Args:
            body: Sync or async callable receiving the context

        Returns:
            UnitOfWorkResult with the dispatched events and any recorded
            post-commit failures

        Raises:
            Exception: Whatever the body raised, after rollback
            PreCommitHandlerFailed: If a pre-commit handler failed, after rollback
            CommitFailed: If the commit failed, after rollback
            RollbackFailed: If the rollback itself failed; ``original`` holds
                the failure being rolled back for
            PostCommitHandlerFailed: Only with raise_post_commit_failures
        """
        state = UnitOfWorkState.BODY_EXECUTING
        sources: Sequence[EventSource] = ()

        try:
            try:
                logger.debug("Executing body in unit of work")
                result = body(self._context)
                if inspect.isawaitable(result):
                    await result

                sources = await self._context.collect_event_sources()
                state = UnitOfWorkState.EVENTS_COLLECTED
                events = tuple(event for source in sources for event in source.events)
                logger.debug(f"Collected {len(events)} domain events from {len(sources)} entities")

                state = UnitOfWorkState.PRE_COMMIT_DISPATCHING
                for event in events:
                    await self._delegator.dispatch_pre_commit(event, self._scope)

                state = UnitOfWorkState.COMMITTING
                await self._commit()
            except BaseException as error:
                logger.error(f"Unit of work failed while {state.value}: {error!r}", exc_info=True)
                await self._rollback(error)
                raise

            state = UnitOfWorkState.POST_COMMIT_DISPATCHING
            failures: List[PostCommitHandlerFailed] = []
            for event in events:
                outcome = await self._delegator.dispatch_post_commit(event, self._scope)
                failures.extend(outcome.failures)

            if failures:
                logger.warning(f"Unit of work committed with {len(failures)} post-commit handler failures")
                if self._options.raise_post_commit_failures:
                    raise failures[0] from failures[0].cause

            logger.debug("Unit of work done")
            return UnitOfWorkResult(events=events, post_commit_failures=failures)
        finally:
            if sources:
                logger.debug(f"Clearing domain events from {len(sources)} entities")
            for source in sources:
                source.clear_events()

    async def _commit(self) -> None:
        logger.debug("Committing unit of work")
        try:
            await self._context.commit()
        except CommitFailed:
            raise
        except Exception as e:
            raise CommitFailed(f"Commit failed: {e}") from e

    async def _rollback(self, error: BaseException) -> None:
        try:
            await self._context.rollback()
        except Exception as rollback_error:
            logger.error(f"Error rolling back unit of work: {rollback_error}", exc_info=True)
            raise RollbackFailed(
                f"Rollback failed while handling {error!r}: {rollback_error}",
                original=error,
            ) from rollback_error
        logger.info("Unit of work rolled back")
