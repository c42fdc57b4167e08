"""
Broker Forwarding

Post-commit handlers that forward committed domain events to RabbitMQ.
"""

import asyncio
import logging
from typing import Type

from domainkit.events import DomainEvent
from domainkit.handlers import DomainEventHandler

from .publisher import EventPublisher

logger = logging.getLogger(__name__)


class ForwardToBrokerHandler(DomainEventHandler):
    """
    Publishes the handled event through the resolved EventPublisher.

    Runs after the commit, so a broker outage is recorded as a post-commit
    failure and never undoes the transaction. Use ``forward_to_broker`` to
    bind it to an event class.
    """
    post_commit = True

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher

    async def handle(self, event: DomainEvent) -> None:
        # BlockingConnection calls must not run on the event loop.
        await asyncio.to_thread(self.publisher.publish, event)
        logger.debug(f"Forwarded event {event.event_type} (ID: {event.event_id}) to broker")


def forward_to_broker(event_cls: Type[DomainEvent]) -> Type[ForwardToBrokerHandler]:
    """
    Create a post-commit handler class forwarding ``event_cls`` to the broker.

    Usage:
        container.register_instance(EventPublisher, publisher)
        registry.register(forward_to_broker(EmployeeHired))
    """
    return type(
        f"Forward{event_cls.__name__}ToBroker",
        (ForwardToBrokerHandler,),
        {"handles": event_cls, "__module__": __name__},
    )
