"""
Domain Event Serializer

Converts domain events to and from the JSON envelope published to the broker.
"""

import json
import logging
from typing import Any, Dict

from domainkit.events import DomainEvent

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = frozenset({"event_type", "event_id", "occurred_at", "data"})


class DomainEventSerializer:
    """
    Serializer for domain event envelopes.

    Envelope format:
        {
            "event_type": "EmployeeHired",
            "event_id": "...",
            "occurred_at": "2026-01-01T00:00:00+00:00",
            "data": {"name": "Jo"}
        }
    """

    @staticmethod
    def to_envelope(event: DomainEvent) -> Dict[str, Any]:
        return {
            "event_type": event.event_type,
            "event_id": event.event_id,
            "occurred_at": event.occurred_at,
            "data": event.payload(),
        }

    @staticmethod
    def to_json(event: DomainEvent) -> str:
        """
        Serialize an event to a JSON envelope.

        Raises:
            TypeError: If the event payload is not JSON-serializable
        """
        try:
            json_str = json.dumps(DomainEventSerializer.to_envelope(event), ensure_ascii=False)
        except TypeError as e:
            logger.error(f"Failed to serialize event {event.event_id}: {e}")
            raise TypeError(
                f"Payload of {event.event_type} must be JSON-serializable. Error: {e}"
            ) from e
        logger.debug(f"Serialized event {event.event_id}: {json_str}")
        return json_str

    @staticmethod
    def from_json(json_str: str) -> Dict[str, Any]:
        """
        Parse a JSON envelope.

        Raises:
            ValueError: If the JSON is invalid or misses envelope fields
        """
        try:
            envelope = json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode JSON: {e}")
            raise ValueError(f"Invalid JSON format: {e}") from e

        if not isinstance(envelope, dict):
            raise ValueError("Event envelope must be a JSON object")

        missing_fields = REQUIRED_FIELDS - set(envelope)
        if missing_fields:
            raise ValueError(f"Missing required fields: {sorted(missing_fields)}")
        return envelope
