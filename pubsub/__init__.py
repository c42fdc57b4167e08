"""
Broker integration: forwards committed domain events to RabbitMQ.
"""

from .amqp_connection import AMQPConfig, AMQPConnection
from .forwarding import ForwardToBrokerHandler, forward_to_broker
from .publisher import EventPublisher, EventPublishFailed
from .serializer import DomainEventSerializer

__all__ = [
    "AMQPConfig",
    "AMQPConnection",
    "DomainEventSerializer",
    "EventPublisher",
    "EventPublishFailed",
    "ForwardToBrokerHandler",
    "forward_to_broker",
]
