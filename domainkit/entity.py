"""
Entity Base with Domain Events

Provides the event source capability and a base class for domain entities
that raise and track domain events.
"""

import logging
from typing import List, Protocol, Tuple, runtime_checkable

from .events import DomainEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSource(Protocol):
    """
    Capability of an entity to accumulate domain events.

    The unit of work only reads ``events`` and calls ``clear_events()``.
    """

    @property
    def events(self) -> Tuple[DomainEvent, ...]:
        ...

    def raise_event(self, event: DomainEvent) -> None:
        ...

    def clear_events(self) -> None:
        ...


class EventAccumulator:
    """
    Ordered collection of raised, not yet dispatched, domain events.

    Embed one in any class that should act as an event source without
    inheriting from Entity.
    """

    def __init__(self):
        self._events: List[DomainEvent] = []

    @property
    def events(self) -> Tuple[DomainEvent, ...]:
        return tuple(self._events)

    def append(self, event: DomainEvent) -> None:
        self._events.append(event)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)


class Entity:
    """
    Base class for domain entities.

    An entity has:
    - A unique identity (``id``) that persists across its lifecycle
    - The ability to raise domain events
    - Mutable state

    Usage:
        class Employee(Entity):
            def __init__(self, employee_id: str, name: str):
                super().__init__()
                self.id = employee_id
                self.name = name

            def hire(self):
                self.raise_event(EmployeeHired(name=self.name))
    """

    def __init__(self):
        """Initialize entity with an empty event accumulator."""
        self._domain_events = EventAccumulator()

    @property
    def events(self) -> Tuple[DomainEvent, ...]:
        """Events raised since the last clear, in raise order."""
        return self._domain_events.events

    def raise_event(self, event: DomainEvent) -> None:
        """
        Raise a domain event.

        Args:
            event: Domain event to raise
        """
        logger.debug(f"{self.__class__.__name__} raised event {event.event_type} (ID: {event.event_id})")
        self._domain_events.append(event)

    def clear_events(self) -> None:
        """Clear all domain events."""
        if self._domain_events:
            logger.debug(f"Clearing {len(self._domain_events)} domain events from {self.__class__.__name__}")
        self._domain_events.clear()

    def __eq__(self, other: object) -> bool:
        """
        Compare entities by identity.

        Two entities are equal if they have the same type and ID.
        """
        if not isinstance(other, Entity):
            return False
        return type(self) == type(other) and hasattr(self, 'id') and hasattr(other, 'id') and self.id == other.id

    def __hash__(self) -> int:
        if hasattr(self, 'id'):
            return hash((type(self), self.id))
        return hash(type(self))
