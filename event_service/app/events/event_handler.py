"""
Event Service Handler Base
==========================

Retry with exponential backoff, dead-lettering and uniform lifecycle logging
shared by every event handler.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..core.setting import get_settings
from ..utils.logging import setup_event_logging
from .base import BaseEvent, EventPublisher
from .schemas import DLQ_CHANNEL, DeadLetterEvent

handler_logger = setup_event_logging(
    "event_service_handlers", log_level=get_settings().LOG_LEVEL
)

E = TypeVar("E", bound=BaseEvent)


async def execute_with_retry(
    operation: Callable[[], Awaitable[None]],
    event_id: str,
    max_retries: int,
    retry_delay: float = 1.0,
    logger: logging.Logger = handler_logger,
) -> None:
    """
    Run ``operation`` until it succeeds or ``max_retries`` attempts are used.

    Waits ``retry_delay * 2^(attempt-1)`` seconds between attempts without
    blocking the event loop. The last error is re-raised once every attempt
    has failed. A ``max_retries`` below 1 still makes a single attempt.
    """
    attempts = max(1, max_retries)
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            await operation()
            return
        except Exception as e:
            last_error = e
            if attempt < attempts:
                delay = retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Event handling failed, attempt {attempt}/{attempts}",
                    extra={
                        "event_id": event_id,
                        "attempt": attempt,
                        "max_retries": attempts,
                        "retry_in_seconds": delay,
                        "error": str(e),
                    },
                )
                await asyncio.sleep(delay)

    logger.error(
        "Event handling failed after all retries",
        extra={
            "event_id": event_id,
            "attempts": attempts,
            "error": str(last_error),
            "error_type": type(last_error).__name__,
        },
    )
    raise last_error  # type: ignore[misc]


def _field(candidate: Mapping, *names: str) -> Any:
    for name in names:
        if name in candidate:
            return candidate[name]
    return None


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _is_timestamp(value: Any) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


class EventHandler(ABC, Generic[E]):
    """
    Abstract base class for event handlers.

    Subclasses set ``max_retries`` and implement ``handle``. ``handle`` should
    call ``log_event_received`` first, run its work through
    ``process_with_retry`` and finish with ``log_event_success``.
    """

    max_retries: int = 3
    default_logger: logging.Logger = handler_logger

    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        retry_delay: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
        dlq_channel: str = DLQ_CHANNEL,
    ):
        self.publisher = publisher
        self.retry_delay = (
            get_settings().HANDLER_RETRY_DELAY if retry_delay is None else retry_delay
        )
        self.logger = logger or self.default_logger
        self.dlq_channel = dlq_channel

    @abstractmethod
    async def handle(self, event: E) -> None:
        """Handle the event"""

    async def execute_with_retry(
        self, operation: Callable[[], Awaitable[None]], event_id: str
    ) -> None:
        await execute_with_retry(
            operation,
            event_id,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            logger=self.logger,
        )

    async def process_with_retry(
        self, event: E, operation: Callable[[], Awaitable[None]]
    ) -> None:
        """Retry ``operation``; on terminal failure dead-letter the event and re-raise"""
        try:
            await self.execute_with_retry(operation, event.event_id)
        except Exception as error:
            self.log_event_error(event, error)
            await self.send_to_dlq(event, error, self.publisher)
            raise

    # ==============================================
    # LIFECYCLE LOGGING
    # ==============================================

    def log_event_received(self, event: E) -> None:
        self.logger.info(
            f"Received {event.event_type} event",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "correlation_id": event.correlation_id,
                "event_timestamp": event.timestamp.isoformat(),
                "stage": "received",
            },
        )

    def log_event_success(self, event: E) -> None:
        self.logger.info(
            f"Successfully processed {event.event_type} event",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "correlation_id": event.correlation_id,
                "stage": "succeeded",
            },
        )

    def log_event_error(self, event: E, error: BaseException) -> None:
        self.logger.error(
            f"Error processing {event.event_type} event",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "correlation_id": event.correlation_id,
                "error": str(error),
                "error_type": type(error).__name__,
                "stage": "failed",
            },
        )

    # ==============================================
    # DEAD LETTERS
    # ==============================================

    async def send_to_dlq(
        self,
        event: E,
        error: BaseException,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        """Publish a dead-letter envelope; never raises"""
        self.logger.error(
            f"Event moved to DLQ: {event.event_id} ({event.event_type})",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "correlation_id": event.correlation_id,
                "error": str(error),
            },
        )
        if publisher is None:
            return

        try:
            await publisher.publish(
                self.dlq_channel, DeadLetterEvent.from_failure(event, error)
            )
        except Exception as publish_error:
            self.logger.error(
                "Failed to publish event to DLQ",
                extra={
                    "event_id": event.event_id,
                    "channel": self.dlq_channel,
                    "error": str(publish_error),
                },
            )

    @staticmethod
    def validate_event(candidate: Any) -> bool:
        """Structural guard for untyped input at the subscription boundary"""
        if isinstance(candidate, BaseEvent):
            return True
        if not isinstance(candidate, Mapping):
            return False
        return (
            _is_non_empty_str(_field(candidate, "eventId", "event_id"))
            and _is_non_empty_str(_field(candidate, "eventType", "event_type"))
            and _is_timestamp(_field(candidate, "timestamp"))
        )
