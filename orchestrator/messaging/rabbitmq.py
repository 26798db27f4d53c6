"""
RabbitMQ adapters built on pika's blocking connection.

Topology (all durable): one topic exchange, a command queue bound with the
command routing key, and a result queue dedicated to this service bound with
the result routing pattern. Other consumers of scrape results bind their own
queues to the same exchange.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from functools import partial

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import (
    AMQPError,
    ChannelClosed,
    ChannelWrongStateError,
    ConnectionClosed,
    ConnectionWrongStateError,
    StreamLostError,
)

from orchestrator.config import BrokerSettings, get_broker_settings
from orchestrator.logging_utils import log_event
from orchestrator.messaging.base import CommandPublisher, Delivery, PublishError, ResultSource
from orchestrator.schemas.messages import ScrapeCommand

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], pika.BlockingConnection]

# Raised on the first use of a connection the broker has already dropped.
_STALE_CONNECTION_ERRORS = (
    StreamLostError,
    ConnectionClosed,
    ConnectionWrongStateError,
    ChannelClosed,
    ChannelWrongStateError,
)


def _default_connection_factory(settings: BrokerSettings) -> ConnectionFactory:
    return lambda: pika.BlockingConnection(pika.URLParameters(settings.url))


def _close_quietly(connection: pika.BlockingConnection | None) -> None:
    if connection is None or connection.is_closed:
        return
    try:
        connection.close()
    except AMQPError as exc:
        logger.warning("Error while closing RabbitMQ connection: %s", exc)


class RabbitMQCommandPublisher(CommandPublisher):
    """
    Publishes persistent JSON scrape commands with publisher confirms.

    A blocking channel must not be used from two threads at once, and the
    dispatch loop publishes from one worker thread per domain, so every
    channel operation runs under a lock. The channel is opened lazily and
    re-opened after a failure.
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._settings = settings or get_broker_settings()
        self._connection_factory = connection_factory or _default_connection_factory(self._settings)
        self._connection: pika.BlockingConnection | None = None
        self._channel: BlockingChannel | None = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """
        Connect and declare the command topology up front.
        """

        with self._lock:
            try:
                self._ensure_channel()
            except AMQPError:
                logger.exception("Failed to initialize RabbitMQ command publisher")
                self._reset()
                raise

    def publish(self, command: ScrapeCommand) -> None:
        body = command.model_dump_json().encode("utf-8")
        properties = pika.BasicProperties(
            content_type="application/json",
            delivery_mode=pika.DeliveryMode.Persistent,
            message_id=str(uuid.uuid4()),
            timestamp=int(time.time()),
            headers={
                "target_id": str(command.target_id),
                "canonical_product_id": str(command.canonical_product_id),
                "seller_name": command.seller_name,
            },
        )

        with self._lock:
            try:
                try:
                    self._basic_publish(body, properties)
                except _STALE_CONNECTION_ERRORS as exc:
                    # idle connection dropped by the broker; one retry on a fresh channel
                    logger.warning(
                        "Publisher connection lost (%r); reconnecting for target %s",
                        exc,
                        command.target_id,
                    )
                    self._reset()
                    self._basic_publish(body, properties)
            except AMQPError as exc:
                self._reset()
                raise PublishError(
                    f"Failed to publish scrape command for target {command.target_id}: {exc!r}"
                ) from exc

        logger.debug(
            "Published scrape command for target %s (product %s) at %s",
            command.target_id,
            command.canonical_product_id,
            command.exact_product_url,
        )

    def close(self) -> None:
        with self._lock:
            self._reset()

    def _basic_publish(self, body: bytes, properties: pika.BasicProperties) -> None:
        self._ensure_channel().basic_publish(
            exchange=self._settings.exchange,
            routing_key=self._settings.command_routing_key,
            body=body,
            properties=properties,
            mandatory=True,
        )

    def _ensure_channel(self) -> BlockingChannel:
        if self._channel is not None and self._channel.is_open:
            return self._channel

        self._reset()
        connection = self._connection_factory()
        channel = connection.channel()
        channel.exchange_declare(
            exchange=self._settings.exchange,
            exchange_type="topic",
            durable=True,
        )
        channel.queue_declare(queue=self._settings.command_queue, durable=True)
        channel.queue_bind(
            queue=self._settings.command_queue,
            exchange=self._settings.exchange,
            routing_key=self._settings.command_routing_key,
        )
        channel.confirm_delivery()

        self._connection = connection
        self._channel = channel
        log_event(
            logger,
            logging.INFO,
            "command_publisher_connected",
            exchange=self._settings.exchange,
            queue=self._settings.command_queue,
            routing_key=self._settings.command_routing_key,
        )
        return channel

    def _reset(self) -> None:
        _close_quietly(self._connection)
        self._connection = None
        self._channel = None


class RabbitMQResultSource(ResultSource):
    """
    Manual-ack consumer over the orchestrator's result queue.

    Must be iterated, settled and closed from a single thread.
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._settings = settings or get_broker_settings()
        self._connection_factory = connection_factory or _default_connection_factory(self._settings)
        self._connection: pika.BlockingConnection | None = None
        self._channel: BlockingChannel | None = None

    def deliveries(self, *, poll_seconds: float) -> Iterator[Delivery | None]:
        channel = self._open()
        for method, _properties, body in channel.consume(
            queue=self._settings.result_queue,
            inactivity_timeout=poll_seconds,
        ):
            if method is None:
                yield None
                continue

            tag = method.delivery_tag
            yield Delivery(
                body=body,
                routing_key=method.routing_key,
                redelivered=bool(method.redelivered),
                ack=partial(channel.basic_ack, delivery_tag=tag),
                reject=lambda requeue, tag=tag: channel.basic_reject(delivery_tag=tag, requeue=requeue),
            )

    def close(self) -> None:
        channel = self._channel
        if channel is not None and channel.is_open:
            try:
                channel.cancel()
            except AMQPError as exc:
                logger.warning("Error while cancelling RabbitMQ consumer: %s", exc)
        _close_quietly(self._connection)
        self._connection = None
        self._channel = None
        logger.info("Scrape result consumer closed")

    def _open(self) -> BlockingChannel:
        connection = self._connection_factory()
        channel = connection.channel()
        channel.exchange_declare(
            exchange=self._settings.exchange,
            exchange_type="topic",
            durable=True,
        )
        channel.queue_declare(queue=self._settings.result_queue, durable=True)
        channel.queue_bind(
            queue=self._settings.result_queue,
            exchange=self._settings.exchange,
            routing_key=self._settings.result_routing_key,
        )
        channel.basic_qos(prefetch_count=self._settings.prefetch_count)

        self._connection = connection
        self._channel = channel
        log_event(
            logger,
            logging.INFO,
            "result_consumer_connected",
            exchange=self._settings.exchange,
            queue=self._settings.result_queue,
            routing_key=self._settings.result_routing_key,
            prefetch_count=self._settings.prefetch_count,
        )
        return channel
