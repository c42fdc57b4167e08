"""
Publisher Module

Provides EventPublisher for publishing domain events to a RabbitMQ exchange.
"""

import logging
import threading
from typing import Callable, Optional

import pika
from pika.exceptions import AMQPError

from domainkit.events import DomainEvent

from .amqp_connection import AMQPConnection
from .serializer import DomainEventSerializer

logger = logging.getLogger(__name__)


class EventPublishFailed(Exception):
    """The broker rejected or could not receive an event."""


class EventPublisher:
    """
    Publishes domain events to a RabbitMQ exchange.

    The routing key defaults to the event type tag, so consumers can bind
    topic patterns such as ``Employee*``. Publishes are serialized on a lock
    because the underlying channel must only be used by one thread at a time,
    and forwarding handlers publish from worker threads.
    """

    def __init__(
        self,
        connection: AMQPConnection,
        exchange_name: str,
        routing_key_formatter: Optional[Callable[[DomainEvent], str]] = None
    ):
        self.connection = connection
        self.exchange_name = exchange_name
        self.routing_key_formatter = routing_key_formatter or (lambda e: e.event_type)
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        """
        Publish one event as a persistent JSON message.

        Raises:
            RuntimeError: If the connection is not open
            EventPublishFailed: If the broker call fails
        """
        body = DomainEventSerializer.to_json(event).encode("utf-8")
        routing_key = self.routing_key_formatter(event)

        with self._lock:
            if not self.connection.is_connected():
                raise RuntimeError("AMQP connection is not established. Call connect() first.")
            try:
                self.connection.channel.basic_publish(
                    exchange=self.exchange_name,
                    routing_key=routing_key,
                    body=body,
                    properties=message_properties(event),
                )
            except AMQPError as e:
                logger.error(f"Could not publish {event.event_type} {event.event_id}: {e}", exc_info=True)
                raise EventPublishFailed(
                    f"Broker rejected {event.event_type} {event.event_id} on '{self.exchange_name}': {e}"
                ) from e

        logger.debug(f"Published {event.event_type} {event.event_id} as '{routing_key}'")


def message_properties(event: DomainEvent) -> pika.BasicProperties:
    """Persistent JSON message properties tagged with the event id and type."""
    return pika.BasicProperties(
        delivery_mode=2,  # persistent
        content_type="application/json",
        content_encoding="utf-8",
        message_id=event.event_id,
        type=event.event_type,
    )
