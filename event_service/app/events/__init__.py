"""
Events module for the Event Service.

Moves domain events from producers to consumers over Redis pub/sub with
at-least-once delivery, automatic reconnection, retry with exponential
backoff and dead-lettering.

Producers:
    - ProductEventProducer: Publishes product lifecycle and user activity events

Consumers:
    - ProductCreatedHandler, ProductUpdatedHandler, ProductDeletedHandler
    - AuditEventHandler: Writes the user activity audit trail

Routing:
    - EventRouter: One subscription per channel, dispatch by event type

Channels:
    events:product, events:audit, events:dlq
"""

from .event_consumers import (
    AuditEventHandler,
    ProductCreatedHandler,
    ProductDeletedHandler,
    ProductUpdatedHandler,
)
from .event_handler import EventHandler, execute_with_retry
from .event_producers import ProductEventProducer
from .event_router import EventRouter, build_event_routes

__all__ = [
    # Producers
    "ProductEventProducer",
    # Handlers
    "EventHandler",
    "execute_with_retry",
    "ProductCreatedHandler",
    "ProductUpdatedHandler",
    "ProductDeletedHandler",
    "AuditEventHandler",
    # Routing
    "EventRouter",
    "build_event_routes",
]
