"""
AMQP Connection Module

Wraps Pika's BlockingConnection for publishing committed domain events to
RabbitMQ: connection setup with retries, exchange declaration, shutdown.
"""

import logging
import os
import time
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import pika
from pika.exceptions import AMQPConnectionError
from pika.adapters.blocking_connection import BlockingChannel

logger = logging.getLogger(__name__)


@dataclass
class AMQPConfig:
    """Configuration for AMQP connection."""
    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    connection_attempts: int = 3
    retry_delay: int = 5
    heartbeat: int = 600
    blocked_connection_timeout: int = 300

    @classmethod
    def from_env(cls, prefix: str = "AMQP_", environ: Optional[Mapping[str, str]] = None) -> "AMQPConfig":
        """
        Build a config from environment variables.

        Each field is read from ``<prefix><FIELD NAME>``, e.g. ``AMQP_HOST``
        or ``AMQP_RETRY_DELAY``. Missing variables keep their defaults.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            if f.type in (int, "int"):
                try:
                    values[f.name] = int(raw)
                except ValueError:
                    raise ValueError(f"{prefix}{f.name.upper()} must be an integer, got {raw!r}") from None
            else:
                values[f.name] = raw
        return cls(**values)

    def connection_parameters(self) -> pika.ConnectionParameters:
        """Pika connection parameters for this config."""
        return pika.ConnectionParameters(
            host=self.host,
            port=self.port,
            virtual_host=self.virtual_host,
            credentials=pika.PlainCredentials(self.username, self.password),
            heartbeat=self.heartbeat,
            blocked_connection_timeout=self.blocked_connection_timeout,
        )


class AMQPConnection:
    """
    Owns the blocking connection and the one channel events are published on.

    Pika's BlockingConnection is not thread-safe. EventPublisher serializes
    its own publishes; anything else sharing this connection must do the same.

    Usage:
        with AMQPConnection(AMQPConfig.from_env()) as connection:
            connection.declare_exchange("domain-events")
            ...
    """

    def __init__(self, config: AMQPConfig):
        self.config = config
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel: Optional[BlockingChannel] = None

    def connect(self) -> None:
        """
        Open the connection and its channel.

        Tries ``config.connection_attempts`` times, sleeping
        ``config.retry_delay`` seconds between attempts.

        Raises:
            AMQPConnectionError: The error of the last attempt
        """
        parameters = self.config.connection_parameters()
        attempts = max(self.config.connection_attempts, 1)
        address = f"{self.config.host}:{self.config.port}"

        attempt = 1
        while True:
            try:
                self.connection = pika.BlockingConnection(parameters)
                break
            except AMQPConnectionError as e:
                if attempt >= attempts:
                    logger.error(f"Giving up on RabbitMQ at {address} after {attempt} attempts: {e}")
                    raise
                logger.warning(
                    f"RabbitMQ at {address} unreachable ({attempt}/{attempts}), "
                    f"retrying in {self.config.retry_delay}s: {e}"
                )
                time.sleep(self.config.retry_delay)
                attempt += 1

        self.channel = self.connection.channel()
        logger.info(f"Connected to RabbitMQ at {address}")

    def declare_exchange(
        self,
        exchange_name: str,
        exchange_type: str = "topic",
        durable: bool = True,
    ) -> None:
        """Declare the exchange events are published to. Topic and durable by default."""
        if not self.channel:
            raise RuntimeError("Channel not initialized. Call connect() first.")

        logger.info(f"Declaring {exchange_type} exchange '{exchange_name}'")
        self.channel.exchange_declare(
            exchange=exchange_name,
            exchange_type=exchange_type,
            durable=durable,
        )

    def is_connected(self) -> bool:
        return bool(
            self.connection is not None and self.connection.is_open
            and self.channel is not None and self.channel.is_open
        )

    def close(self) -> None:
        """Close the channel and connection, if open."""
        for resource in (self.channel, self.connection):
            if resource is not None and resource.is_open:
                resource.close()
        self.channel = None
        self.connection = None
        logger.info("RabbitMQ connection closed")

    def __enter__(self) -> "AMQPConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
