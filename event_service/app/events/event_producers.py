"""
Event Service Event Producers
=============================

Best-effort publishing used by product and user use cases after their
primary work has committed. A failed publish is logged and never propagated,
so it cannot roll back or fail the operation that triggered it.
"""

from typing import Any, Dict, Optional

from ..core.setting import get_settings
from ..utils.logging import setup_event_logging
from .base import BaseEvent, EventPublisher
from .schemas import (
    AUDIT_CHANNEL,
    PRODUCT_CHANNEL,
    ProductCreatedEvent,
    ProductCreatedEventData,
    ProductDeletedEvent,
    ProductDeletedEventData,
    ProductUpdatedEvent,
    ProductUpdatedEventData,
    UserActivityEvent,
    UserActivityEventData,
)

logger = setup_event_logging(
    "event_service_producers", log_level=get_settings().LOG_LEVEL
)


class ProductEventProducer:
    """Builds typed events and publishes them to their channels"""

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher

    async def _publish(self, channel: str, event: BaseEvent) -> Optional[BaseEvent]:
        try:
            await self.publisher.publish(channel, event)
        except Exception as e:
            logger.error(
                f"Failed to publish {event.event_type} event",
                extra={
                    "channel": channel,
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "correlation_id": event.correlation_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return None
        return event

    # ==============================================
    # PRODUCT EVENTS
    # ==============================================

    async def publish_product_created(
        self,
        product_id: str,
        name: str,
        price: float,
        category: str,
        correlation_id: Optional[str] = None,
    ) -> Optional[ProductCreatedEvent]:
        """Publish product created event"""
        event = ProductCreatedEvent(
            correlation_id=correlation_id,
            payload=ProductCreatedEventData(
                product_id=product_id, name=name, price=price, category=category
            ),
        )
        return await self._publish(PRODUCT_CHANNEL, event)  # type: ignore[return-value]

    async def publish_product_updated(
        self,
        product_id: str,
        changes: Dict[str, Any],
        correlation_id: Optional[str] = None,
    ) -> Optional[ProductUpdatedEvent]:
        """Publish product updated event with only the modified fields"""
        event = ProductUpdatedEvent(
            correlation_id=correlation_id,
            payload=ProductUpdatedEventData(product_id=product_id, changes=changes),
        )
        return await self._publish(PRODUCT_CHANNEL, event)  # type: ignore[return-value]

    async def publish_product_deleted(
        self, product_id: str, correlation_id: Optional[str] = None
    ) -> Optional[ProductDeletedEvent]:
        """Publish product deleted event"""
        event = ProductDeletedEvent(
            correlation_id=correlation_id,
            payload=ProductDeletedEventData(product_id=product_id),
        )
        return await self._publish(PRODUCT_CHANNEL, event)  # type: ignore[return-value]

    # ==============================================
    # AUDIT EVENTS
    # ==============================================

    async def publish_user_activity(
        self,
        user_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> Optional[UserActivityEvent]:
        """Publish a user activity event to the audit channel"""
        event = UserActivityEvent(
            correlation_id=correlation_id,
            payload=UserActivityEventData(
                user_id=user_id, action=action, metadata=metadata or {}
            ),
        )
        return await self._publish(AUDIT_CHANNEL, event)  # type: ignore[return-value]
