"""
Event Service Event Router
==========================

Subscribes each logical channel once and routes every incoming event to the
handler registered for its event type. Pub/sub is best-effort
infrastructure: nothing here raises into application startup or shutdown.
"""

from collections.abc import Mapping
from functools import partial
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..core.setting import get_settings
from ..utils.logging import setup_event_logging
from .base import BaseEvent, EventSubscriber
from .event_handler import EventHandler
from .schemas import (
    AUDIT_CHANNEL,
    PRODUCT_CHANNEL,
    PRODUCT_CREATED,
    PRODUCT_DELETED,
    PRODUCT_UPDATED,
    USER_ACTIVITY,
    parse_event,
)

logger = setup_event_logging(
    "event_service_router", log_level=get_settings().LOG_LEVEL
)

EventRoutes = Dict[str, Dict[str, EventHandler]]


def build_event_routes(
    product_created_handler: EventHandler,
    product_updated_handler: EventHandler,
    product_deleted_handler: EventHandler,
    audit_handler: EventHandler,
) -> EventRoutes:
    """Map channel -> event type -> handler for the standard channels"""
    return {
        PRODUCT_CHANNEL: {
            PRODUCT_CREATED: product_created_handler,
            PRODUCT_UPDATED: product_updated_handler,
            PRODUCT_DELETED: product_deleted_handler,
        },
        AUDIT_CHANNEL: {
            USER_ACTIVITY: audit_handler,
        },
    }


class EventRouter:
    """Composition of one subscriber and the handlers for each channel"""

    def __init__(self, subscriber: EventSubscriber, routes: EventRoutes):
        self.subscriber = subscriber
        self.routes = routes
        self._is_initialized = False

    async def initialize(self) -> None:
        if self._is_initialized:
            logger.warning("Pub/Sub system already initialized")
            return

        try:
            await self.subscriber.initialize()
            if not self.subscriber.get_connection_status():
                logger.warning(
                    "Subscriber not connected, Pub/Sub system left inactive",
                    extra={"operation": "pubsub_init_skipped"},
                )
                return
            logger.info("Subscriber service initialized successfully")

            # One dispatcher per channel, not per event type
            for channel in self.routes:
                await self.subscriber.subscribe(channel, partial(self.dispatch, channel))

            self._is_initialized = True
            logger.info(
                "Pub/Sub system initialized successfully",
                extra={
                    "channels": list(self.routes),
                    "operation": "pubsub_init",
                },
            )
        except Exception as e:
            logger.error(
                "Failed to initialize Pub/Sub system",
                extra={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "operation": "pubsub_init_failed",
                },
            )
            await self._release_subscriber()

    async def shutdown(self) -> None:
        if not self._is_initialized:
            return

        self._is_initialized = False
        try:
            await self.subscriber.disconnect()
            logger.info("Subscriber service disconnected")
        except Exception as e:
            logger.error(
                "Error during Pub/Sub shutdown",
                extra={"error": str(e), "operation": "pubsub_shutdown_failed"},
            )

    def is_ready(self) -> bool:
        return self._is_initialized

    async def dispatch(self, channel: str, raw: Any) -> None:
        """Route one decoded message to its handler; never raises"""
        if not EventHandler.validate_event(raw):
            logger.warning(
                "Invalid event envelope received",
                extra={"channel": channel, "operation": "dispatch_invalid"},
            )
            return

        event_type = self._event_type(raw)
        handler = self.routes.get(channel, {}).get(event_type)
        if handler is None:
            logger.warning(
                "Unknown event type received",
                extra={
                    "channel": channel,
                    "event_type": event_type,
                    "operation": "dispatch_unknown_type",
                },
            )
            return

        try:
            event = raw if isinstance(raw, BaseEvent) else parse_event(raw)
        except ValidationError as e:
            logger.error(
                f"Invalid {event_type} event payload",
                extra={
                    "channel": channel,
                    "event_type": event_type,
                    "event_id": raw.get("eventId"),
                    "error": str(e),
                    "operation": "dispatch_invalid_payload",
                },
            )
            return

        try:
            await handler.handle(event)
        except Exception as e:
            logger.error(
                f"Error handling {event_type} event",
                extra={
                    "channel": channel,
                    "event_type": event_type,
                    "event_id": event.event_id,
                    "correlation_id": event.correlation_id,
                    "error": str(e),
                    "operation": "dispatch_handler_failed",
                },
            )

    @staticmethod
    def _event_type(raw: Any) -> Optional[str]:
        if isinstance(raw, BaseEvent):
            return raw.event_type
        if isinstance(raw, Mapping):
            return raw.get("eventType", raw.get("event_type"))
        return None

    async def _release_subscriber(self) -> None:
        try:
            await self.subscriber.disconnect()
        except Exception as e:
            logger.error(
                "Error disconnecting subscriber service",
                extra={"error": str(e)},
            )
