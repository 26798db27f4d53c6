"""
Messaging interfaces for command dispatch and result delivery.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from orchestrator.schemas.messages import ScrapeCommand


class MessagingError(Exception):
    """Base exception for broker failures."""


class PublishError(MessagingError):
    """Raised when a command could not be handed to the broker."""


class CommandPublisher(ABC):
    """
    Outbound channel for scrape commands.
    """

    @abstractmethod
    def publish(self, command: ScrapeCommand) -> None:
        """
        Publish one command. Returns only once the broker has accepted it;
        raises ``PublishError`` otherwise.
        """

    def close(self) -> None:
        """
        Release broker resources. Safe to call more than once.
        """


@dataclass(frozen=True)
class Delivery:
    """
    One inbound message together with its settlement primitives.

    Exactly one of ``ack`` / ``reject`` must be called per delivery.
    """

    body: bytes
    routing_key: str
    redelivered: bool
    ack: Callable[[], None]
    reject: Callable[[bool], None]


class ResultSource(ABC):
    """
    Durable subscription delivering scrape results addressed to this service.
    """

    @abstractmethod
    def deliveries(self, *, poll_seconds: float) -> Iterator[Delivery | None]:
        """
        Yield deliveries as they arrive. ``None`` is yielded whenever
        ``poll_seconds`` pass without a message so the caller can check
        for shutdown between messages.
        """

    def close(self) -> None:
        """
        Stop consuming. Unsettled deliveries return to the queue.
        """
