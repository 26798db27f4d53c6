"""
Broker adapters for scrape commands and scrape results.
"""

from orchestrator.messaging.base import (
    CommandPublisher,
    Delivery,
    MessagingError,
    PublishError,
    ResultSource,
)
from orchestrator.messaging.rabbitmq import RabbitMQCommandPublisher, RabbitMQResultSource

__all__ = [
    "CommandPublisher",
    "Delivery",
    "MessagingError",
    "PublishError",
    "RabbitMQCommandPublisher",
    "RabbitMQResultSource",
    "ResultSource",
]
