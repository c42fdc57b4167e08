"""
domainkit - Transactional Domain Event Building Blocks

This package provides Domain-Driven Design (DDD) building blocks:
- DomainEvent: Immutable base class for domain events
- Entity / EventSource: Entities that raise and accumulate domain events
- DomainEventHandlerRegistry: Pre-commit and post-commit event handlers
- UnitOfWork: Runs a body of changes, dispatches events, commits or rolls back
- InMemoryDomainContext: In-memory persistence context
- DI Container: Resolves handler dependencies
"""

from .context import DomainContext, InMemoryDomainContext
from .di_container import DIContainer, Resolver
from .entity import Entity, EventAccumulator, EventSource
from .errors import (
    CommitFailed,
    DomainKitError,
    HandlerInvocationFailed,
    PostCommitHandlerFailed,
    PreCommitHandlerFailed,
    RollbackFailed,
)
from .events import DomainEvent, event_type_of
from .handler_registry import DomainEventHandlerRegistry, HandlerInvocationResult
from .handlers import DomainEventHandler, HandlerRegistration
from .unit_of_work import UnitOfWork, UnitOfWorkOptions, UnitOfWorkResult, UnitOfWorkState

__all__ = [
    "DomainEvent",
    "event_type_of",
    "Entity",
    "EventAccumulator",
    "EventSource",
    "DomainEventHandler",
    "HandlerRegistration",
    "DomainEventHandlerRegistry",
    "HandlerInvocationResult",
    "DomainContext",
    "InMemoryDomainContext",
    "UnitOfWork",
    "UnitOfWorkOptions",
    "UnitOfWorkResult",
    "UnitOfWorkState",
    "DIContainer",
    "Resolver",
    "DomainKitError",
    "HandlerInvocationFailed",
    "PreCommitHandlerFailed",
    "PostCommitHandlerFailed",
    "CommitFailed",
    "RollbackFailed",
]
