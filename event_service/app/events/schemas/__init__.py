"""
Event Service Event Schemas
===========================

Re-exports everything from event_schemas.py for a flat import path.
"""

from .event_schemas import (
    # Channels
    AUDIT_CHANNEL,
    # Event types
    BATCH,
    DLQ_CHANNEL,
    EVENT_TYPES,
    PRODUCT_CHANNEL,
    PRODUCT_CREATED,
    PRODUCT_DELETED,
    PRODUCT_UPDATED,
    USER_ACTIVITY,
    # Typed events
    AppEvent,
    # Dead letters
    DeadLetterError,
    DeadLetterEvent,
    ProductCreatedEvent,
    # Payloads
    ProductCreatedEventData,
    ProductDeletedEvent,
    ProductDeletedEventData,
    ProductUpdatedEvent,
    ProductUpdatedEventData,
    UserActivityEvent,
    UserActivityEventData,
    # Utility functions
    parse_event,
)

__all__ = [
    "PRODUCT_CHANNEL",
    "AUDIT_CHANNEL",
    "DLQ_CHANNEL",
    "PRODUCT_CREATED",
    "PRODUCT_UPDATED",
    "PRODUCT_DELETED",
    "USER_ACTIVITY",
    "BATCH",
    "EVENT_TYPES",
    "ProductCreatedEventData",
    "ProductUpdatedEventData",
    "ProductDeletedEventData",
    "UserActivityEventData",
    "ProductCreatedEvent",
    "ProductUpdatedEvent",
    "ProductDeletedEvent",
    "UserActivityEvent",
    "AppEvent",
    "DeadLetterError",
    "DeadLetterEvent",
    "parse_event",
]
