"""
Event Service Event Schemas
===========================

Channels, event type discriminants, typed payloads and the dead-letter
envelope. The ``event_type`` discriminant fully determines the payload shape.
"""

import traceback
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from ..base import BaseEvent, EventModel, utc_now

# ==============================================
# CHANNELS
# ==============================================

PRODUCT_CHANNEL = "events:product"
AUDIT_CHANNEL = "events:audit"
DLQ_CHANNEL = "events:dlq"

# ==============================================
# EVENT TYPES
# ==============================================

PRODUCT_CREATED = "PRODUCT_CREATED"
PRODUCT_UPDATED = "PRODUCT_UPDATED"
PRODUCT_DELETED = "PRODUCT_DELETED"
USER_ACTIVITY = "USER_ACTIVITY"
# Reserved for grouped delivery, no payload model yet
BATCH = "BATCH"

EVENT_TYPES = frozenset(
    [PRODUCT_CREATED, PRODUCT_UPDATED, PRODUCT_DELETED, USER_ACTIVITY, BATCH]
)

# ==============================================
# PRODUCT EVENT SCHEMAS
# ==============================================


class ProductCreatedEventData(EventModel):
    """Payload of product creation events"""

    product_id: str
    name: str
    price: float
    category: str


class ProductUpdatedEventData(EventModel):
    """Payload of product update events; ``changes`` holds only modified fields"""

    product_id: str
    changes: Dict[str, Any] = Field(default_factory=dict)


class ProductDeletedEventData(EventModel):
    """Payload of product deletion events"""

    product_id: str


class ProductCreatedEvent(BaseEvent):
    event_type: Literal["PRODUCT_CREATED"] = PRODUCT_CREATED
    payload: ProductCreatedEventData


class ProductUpdatedEvent(BaseEvent):
    event_type: Literal["PRODUCT_UPDATED"] = PRODUCT_UPDATED
    payload: ProductUpdatedEventData


class ProductDeletedEvent(BaseEvent):
    event_type: Literal["PRODUCT_DELETED"] = PRODUCT_DELETED
    payload: ProductDeletedEventData


# ==============================================
# USER ACTIVITY EVENT SCHEMAS
# ==============================================


class UserActivityEventData(EventModel):
    """Payload of user activity (audit) events"""

    user_id: str
    action: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserActivityEvent(BaseEvent):
    event_type: Literal["USER_ACTIVITY"] = USER_ACTIVITY
    payload: UserActivityEventData


AppEvent = Annotated[
    Union[
        ProductCreatedEvent,
        ProductUpdatedEvent,
        ProductDeletedEvent,
        UserActivityEvent,
    ],
    Field(discriminator="event_type"),
]

_app_event_adapter: TypeAdapter = TypeAdapter(AppEvent)


def parse_event(data: Any) -> Union[
    ProductCreatedEvent, ProductUpdatedEvent, ProductDeletedEvent, UserActivityEvent
]:
    """Validate a decoded wire message into its typed event.

    Raises ``pydantic.ValidationError`` for unknown event types or payloads
    that do not match their discriminant.
    """
    return _app_event_adapter.validate_python(data)


# ==============================================
# DEAD LETTER SCHEMAS
# ==============================================


class DeadLetterError(EventModel):
    message: str
    error_type: str
    stack: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class DeadLetterEvent(EventModel):
    """Envelope published to the DLQ channel when a handler gives up"""

    original_event: Dict[str, Any]
    error: DeadLetterError
    failed_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_failure(cls, event: BaseEvent, error: BaseException) -> "DeadLetterEvent":
        return cls(
            original_event=event.to_wire(),
            error=DeadLetterError(
                message=str(error),
                error_type=type(error).__name__,
                stack="".join(traceback.format_exception(error)),
            ),
        )
