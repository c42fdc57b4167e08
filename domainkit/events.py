"""
Domain Events

Provides the immutable base type for domain events and the stable type tag
used to route them to handlers.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Type, Union
from uuid import uuid4

_METADATA_FIELDS = ("event_id", "occurred_at")


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Base class for domain events.

    Domain events are immutable records of something that happened in the
    domain. Subclasses are frozen dataclasses that add payload fields:

        @dataclass(frozen=True)
        class EmployeeHired(DomainEvent):
            name: str

    Handlers are bound to the event's ``event_type`` tag, which defaults to the
    class name. Declare ``event_type: ClassVar[str] = "..."`` on a subclass to
    keep the tag stable across class renames.

    Attributes:
        event_id: Unique identifier for this event
        occurred_at: When the event occurred (UTC, ISO-8601)
    """
    event_type: ClassVar[str] = "DomainEvent"

    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "event_type" not in cls.__dict__:
            cls.event_type = cls.__name__

    def payload(self) -> Dict[str, Any]:
        """Event-specific fields, without the base metadata."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in _METADATA_FIELDS
        }


def event_type_of(event: Union[DomainEvent, Type[DomainEvent]]) -> str:
    """Return the type tag of an event instance or event class."""
    return event.event_type
