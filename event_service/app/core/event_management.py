"""
Event Service Event Management
Builds the pub/sub publisher, subscriber, handlers and router once per
process and owns their startup and shutdown.
"""

from typing import Any, Dict, Optional

from ..events.base.redis_client import RedisEventPublisher, RedisEventSubscriber
from ..events.event_consumers import (
    AuditEventHandler,
    ProductCreatedHandler,
    ProductDeletedHandler,
    ProductUpdatedHandler,
)
from ..events.event_producers import ProductEventProducer
from ..events.event_router import EventRouter, build_event_routes
from ..utils.logging import setup_event_logging
from .setting import get_settings

logger = setup_event_logging("event_service_events", log_level=get_settings().LOG_LEVEL)

# Global instances
_publisher: Optional[RedisEventPublisher] = None
_event_producer: Optional[ProductEventProducer] = None
_event_router: Optional[EventRouter] = None


async def init_events() -> None:
    """Initialize publishing and subscriptions; failures leave events degraded"""
    global _publisher, _event_producer, _event_router

    settings = get_settings()
    logger.info(
        "Initializing event infrastructure",
        extra={
            "operation": "init_events",
            "redis_disabled": settings.REDIS_DISABLED,
            "service_name": settings.SERVICE_NAME,
        },
    )

    try:
        if not settings.REDIS_DISABLED:
            _publisher = RedisEventPublisher(redis_url=settings.REDIS_URL)
            await _publisher.start()
            _event_producer = ProductEventProducer(_publisher)

        handler_options: Dict[str, Any] = {
            "publisher": _publisher,
            "retry_delay": settings.HANDLER_RETRY_DELAY,
        }
        routes = build_event_routes(
            ProductCreatedHandler(**handler_options),
            ProductUpdatedHandler(**handler_options),
            ProductDeletedHandler(**handler_options),
            AuditEventHandler(**handler_options),
        )
        _event_router = EventRouter(RedisEventSubscriber(), routes)
        await _event_router.initialize()

        logger.info(
            "Event infrastructure initialized",
            extra={
                "operation": "init_events_complete",
                "router_ready": _event_router.is_ready(),
                "publisher_available": _event_producer is not None,
            },
        )
    except Exception as e:
        logger.warning(
            "Event initialization failed - operating in degraded mode",
            extra={
                "operation": "init_events_failed",
                "error": str(e),
                "degraded_mode": True,
            },
        )


async def close_events() -> None:
    """Release subscriptions and the publishing connection"""
    global _publisher, _event_producer, _event_router

    try:
        if _event_router:
            await _event_router.shutdown()
        if _publisher:
            await _publisher.stop()
        logger.info(
            "Event infrastructure closed",
            extra={"operation": "close_events_complete"},
        )
    except Exception as e:
        logger.error(
            "Error closing event infrastructure",
            extra={"operation": "close_events_error", "error": str(e)},
        )
    finally:
        _publisher = None
        _event_producer = None
        _event_router = None


def get_event_producer() -> Optional[ProductEventProducer]:
    return _event_producer


def get_event_router() -> Optional[EventRouter]:
    return _event_router


async def health_check_events() -> Dict[str, Any]:
    """Pub/sub status for the health endpoint"""
    subscriber = _event_router.subscriber if _event_router else None
    status = {
        "ready": _event_router.is_ready() if _event_router else False,
        "subscriber_connected": (
            subscriber.get_connection_status() if subscriber else False
        ),
        "subscribed_channels": (
            subscriber.get_subscribed_channels() if subscriber else []
        ),
        "publisher_healthy": (
            await _publisher.health_check() if _publisher else False
        ),
    }
    logger.debug(
        "Event infrastructure health check",
        extra={"operation": "health_check_events", **status},
    )
    return status
