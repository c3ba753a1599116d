import asyncio
import inspect
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis  # type: ignore
from pydantic import BaseModel
from redis.exceptions import RedisError  # type: ignore

from ...core.setting import get_settings
from ...utils.logging import setup_event_logging
from . import EventPublisher, EventSubscriber, MessageCallback
from .exceptions import (
    EventSerializationError,
    SubscriberConnectionError,
    SubscriberNotInitializedError,
)

logger = setup_event_logging(
    "event_service_redis", log_level=get_settings().LOG_LEVEL
)

TRANSPORT_ERRORS = (RedisError, OSError)


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_event(channel: str, event: Any) -> str:
    """Encode an event (pydantic model or plain mapping) as a JSON string"""
    try:
        if isinstance(event, BaseModel):
            return event.model_dump_json(by_alias=True)
        return json.dumps(event, default=_json_default)
    except (TypeError, ValueError, RecursionError) as e:
        raise EventSerializationError(channel, str(e)) from e


def _event_context(event: Any) -> Dict[str, Any]:
    """Best-effort id/type lookup for log context"""
    if isinstance(event, BaseModel):
        return {
            "event_id": getattr(event, "event_id", None),
            "event_type": getattr(event, "event_type", None),
        }
    if isinstance(event, dict):
        return {
            "event_id": event.get("eventId"),
            "event_type": event.get("eventType"),
        }
    return {}


def _payload_size(raw: Any) -> int:
    if isinstance(raw, (bytes, bytearray)):
        return len(raw)
    if isinstance(raw, str):
        return len(raw.encode("utf-8"))
    return 0


class RedisEventPublisher(EventPublisher):
    """
    Publishes events to Redis channels.

    Uses its own client: a connection that has entered subscriber mode
    cannot issue ordinary commands such as PUBLISH.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url or get_settings().REDIS_URL
        self.client = client
        self.is_connected = False

    def _get_client(self) -> aioredis.Redis:
        if self.client is None:
            self.client = aioredis.from_url(self.redis_url, decode_responses=True)
        return self.client

    async def start(self) -> bool:
        """Verify the broker is reachable. Publishing works lazily either way."""
        try:
            await self._get_client().ping()
            self.is_connected = True
            logger.info(
                "Redis publisher connected",
                extra={"operation": "publisher_connect"},
            )
        except TRANSPORT_ERRORS as e:
            self.is_connected = False
            logger.warning(
                "Redis publisher could not reach broker",
                extra={"error": str(e), "operation": "publisher_connect_failed"},
            )
        return self.is_connected

    async def stop(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.aclose()
            logger.info("Redis publisher stopped")
        except TRANSPORT_ERRORS as e:
            logger.warning(
                "Error stopping Redis publisher",
                extra={"error": str(e), "operation": "stop_publisher"},
            )
        finally:
            self.client = None
            self.is_connected = False

    async def publish(self, channel: str, event: Any) -> int:
        """
        Serialize ``event`` to JSON and publish it on ``channel``.

        Returns the number of subscribers the broker delivered to. Raises
        EventSerializationError for unencodable events; transport errors are
        re-raised unchanged. No retry happens here.
        """
        context = _event_context(event)
        try:
            message = serialize_event(channel, event)
        except EventSerializationError as e:
            logger.error(
                f"Failed to publish message to channel {channel}",
                extra={
                    "channel": channel,
                    "error": e.reason,
                    "operation": "publish_serialize_failed",
                    **context,
                },
            )
            raise

        message_size = len(message.encode("utf-8"))
        try:
            receivers = await self._get_client().publish(channel, message)
        except Exception as e:
            logger.error(
                f"Failed to publish message to channel {channel}",
                extra={
                    "channel": channel,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "operation": "publish_failed",
                    **context,
                },
            )
            raise

        logger.info(
            f"Published message to channel {channel}",
            extra={
                "channel": channel,
                "message_size": message_size,
                "receivers": receivers,
                "operation": "publish_event",
                **context,
            },
        )
        return receivers

    async def health_check(self) -> bool:
        """Check if the publishing connection is healthy"""
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except TRANSPORT_ERRORS as e:
            logger.warning(
                "Redis publisher health check failed",
                extra={"error": str(e), "operation": "health_check"},
            )
            return False


class SubscriberState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    EXHAUSTED = "exhausted"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


# States from which initialize() may (re)open the connection
_OPENABLE_STATES = (
    SubscriberState.UNINITIALIZED,
    SubscriberState.EXHAUSTED,
    SubscriberState.CLOSED,
)


class RedisEventSubscriber(EventSubscriber):
    """
    Redis pub/sub subscriber with automatic reconnection.

    One listener task reads the subscription connection and routes each
    message to a per-channel queue; one worker task per channel drains its
    queue in order and invokes the channel's single callback. A slow callback
    therefore only delays later messages of its own channel.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_reconnect_attempts: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        settings = get_settings()
        self.redis_url = redis_url or settings.REDIS_URL
        self.max_reconnect_attempts = (
            settings.SUBSCRIBER_MAX_RECONNECT_ATTEMPTS
            if max_reconnect_attempts is None
            else max_reconnect_attempts
        )
        self.reconnect_delay = (
            settings.SUBSCRIBER_RECONNECT_DELAY
            if reconnect_delay is None
            else reconnect_delay
        )
        self.poll_timeout = (
            settings.SUBSCRIBER_POLL_TIMEOUT if poll_timeout is None else poll_timeout
        )
        self.enabled = (not settings.REDIS_DISABLED) if enabled is None else enabled
        self._client_factory = client_factory or self._create_client

        self.state = SubscriberState.UNINITIALIZED
        self._client: Any = None
        self._pubsub: Any = None
        self._handlers: Dict[str, MessageCallback] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._listener_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(self.redis_url, decode_responses=True)

    # ==============================================
    # LIFECYCLE
    # ==============================================

    async def initialize(self) -> None:
        """Open the dedicated subscription connection"""
        if not self.enabled:
            logger.warning(
                "Redis is disabled. Subscriber service will not be initialized."
            )
            return

        if self.state not in _OPENABLE_STATES:
            logger.warning(
                "Subscriber service already initialized",
                extra={"state": self.state.value},
            )
            return

        previous_state = self.state
        self.state = SubscriberState.CONNECTING
        try:
            await self._connect()
        except Exception as e:
            # disconnect() must still release channels registered before the failure
            self.state = previous_state
            await self._release_connection_quietly()
            logger.error(
                "Failed to initialize subscriber client",
                extra={"error": str(e), "operation": "subscriber_connect_failed"},
            )
            raise

        logger.info(
            "Subscriber client connected",
            extra={"operation": "subscriber_connect"},
        )

    async def disconnect(self) -> None:
        """Clear every channel and handler and release the connection"""
        if self.state in (SubscriberState.UNINITIALIZED, SubscriberState.CLOSED):
            return

        self.state = SubscriberState.SHUTTING_DOWN
        self._handlers.clear()

        tasks = [self._reconnect_task, self._listener_task, *self._workers.values()]
        self._reconnect_task = None
        self._listener_task = None
        self._workers.clear()
        self._queues.clear()
        await self._cancel_tasks(tasks)

        try:
            await self._release_connection()
        except Exception as e:
            logger.error(
                "Error during subscriber service disconnect",
                extra={"error": str(e), "operation": "subscriber_disconnect_failed"},
            )
            raise
        finally:
            self.state = SubscriberState.CLOSED

        logger.info("Subscriber service disconnected successfully")

    def get_connection_status(self) -> bool:
        return self.state is SubscriberState.CONNECTED

    def get_subscribed_channels(self) -> List[str]:
        return list(self._handlers)

    # ==============================================
    # SUBSCRIPTIONS
    # ==============================================

    async def subscribe(self, channel: str, handler: MessageCallback) -> None:
        """
        Register ``handler`` as the only callback for ``channel``.

        Subscribing a channel again replaces its callback.
        """
        if self.state in (SubscriberState.UNINITIALIZED, SubscriberState.CLOSED):
            logger.error(
                f"Failed to subscribe to channel {channel}",
                extra={"channel": channel, "reason": "not_initialized"},
            )
            raise SubscriberNotInitializedError(
                "Subscriber service not initialized. Call initialize() first."
            )
        if self.state in (SubscriberState.EXHAUSTED, SubscriberState.SHUTTING_DOWN):
            logger.error(
                f"Failed to subscribe to channel {channel}",
                extra={"channel": channel, "state": self.state.value},
            )
            raise SubscriberConnectionError(
                f"Cannot subscribe to {channel}: subscriber is {self.state.value}"
            )

        already_subscribed = channel in self._handlers
        self._handlers[channel] = handler
        self._ensure_worker(channel)

        if already_subscribed:
            logger.info(
                f"Replaced handler for channel {channel}",
                extra={"channel": channel, "operation": "subscribe_replace"},
            )
            return

        if self.state is not SubscriberState.CONNECTED:
            # Picked up by the resubscribe step of the pending reconnection
            logger.warning(
                f"Subscriber reconnecting, {channel} will be subscribed once ready",
                extra={"channel": channel, "state": self.state.value},
            )
            return

        try:
            await self._pubsub.subscribe(channel)
        except Exception as e:
            self._handlers.pop(channel, None)
            self._stop_worker(channel)
            logger.error(
                f"Failed to subscribe to channel {channel}",
                extra={"channel": channel, "error": str(e)},
            )
            raise SubscriberConnectionError(
                f"Failed to subscribe to channel {channel}"
            ) from e

        logger.info(
            f"Subscribed to channel {channel}",
            extra={"channel": channel, "operation": "subscribe"},
        )

    async def unsubscribe(self, channel: str) -> None:
        if self.state in (SubscriberState.UNINITIALIZED, SubscriberState.CLOSED):
            logger.warning(
                f"Cannot unsubscribe from {channel}: Subscriber not initialized",
                extra={"channel": channel},
            )
            return

        self._handlers.pop(channel, None)
        self._stop_worker(channel)

        if self.state is not SubscriberState.CONNECTED or self._pubsub is None:
            return

        try:
            await self._pubsub.unsubscribe(channel)
            logger.info(
                f"Unsubscribed from channel {channel}",
                extra={"channel": channel, "operation": "unsubscribe"},
            )
        except Exception as e:
            logger.error(
                f"Failed to unsubscribe from channel {channel}",
                extra={"channel": channel, "error": str(e)},
            )

    # ==============================================
    # CONNECTION MANAGEMENT
    # ==============================================

    async def _connect(self) -> None:
        self._client = self._client_factory()
        await self._client.ping()
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._resubscribe_all()

        self.state = SubscriberState.CONNECTED
        self._reconnect_attempts = 0
        self._listener_task = asyncio.create_task(
            self._listen(self._pubsub, self._client), name="redis-subscriber-listener"
        )

    async def _resubscribe_all(self) -> None:
        """Subscribe every registered channel on the current connection"""
        done: set = set()
        pending = set(self._handlers)
        while pending:
            await self._pubsub.subscribe(*sorted(pending))
            for channel in sorted(pending):
                logger.info(
                    f"Resubscribed to {channel} after reconnection",
                    extra={"channel": channel, "operation": "resubscribe"},
                )
            done |= pending
            # Channels registered while the subscribe call was in flight
            pending = set(self._handlers) - done

    async def _listen(self, pubsub: Any, client: Any) -> None:
        try:
            while self.state is SubscriberState.CONNECTED:
                if not pubsub.subscribed:
                    # Nothing to read, so probe the broker to notice a dropped link
                    await client.ping()
                    await asyncio.sleep(self.poll_timeout)
                    continue
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_timeout
                )
                if message is not None:
                    self._route(message)
        except Exception as e:
            await self._handle_connection_lost(e)

    def _route(self, message: Dict[str, Any]) -> None:
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")

        queue = self._queues.get(channel)  # type: ignore[arg-type]
        if queue is None:
            logger.warning(
                f"No handler found for channel: {channel}",
                extra={"channel": channel},
            )
            return
        queue.put_nowait(message.get("data"))

    async def _handle_connection_lost(self, error: Exception) -> None:
        if self.state is not SubscriberState.CONNECTED:
            return

        logger.error(
            "Subscriber client error",
            extra={
                "error": str(error),
                "error_type": type(error).__name__,
                "operation": "subscriber_connection_lost",
            },
        )
        self.state = SubscriberState.DISCONNECTED
        self._listener_task = None
        logger.warning("Subscriber client disconnected")

        await self._release_connection_quietly()
        self._reconnect_task = asyncio.create_task(
            self._reconnect(), name="redis-subscriber-reconnect"
        )

    async def _reconnect(self) -> None:
        """Reconnect with exponential backoff, bounded by max_reconnect_attempts"""
        while self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_attempts += 1
            delay = self.reconnect_delay * (2**self._reconnect_attempts)
            logger.info(
                f"Attempting reconnection {self._reconnect_attempts}/{self.max_reconnect_attempts}",
                extra={
                    "attempt": self._reconnect_attempts,
                    "max_retries": self.max_reconnect_attempts,
                    "retry_in_seconds": delay,
                    "operation": "subscriber_reconnect",
                },
            )
            await asyncio.sleep(delay)

            if self.state is not SubscriberState.DISCONNECTED:
                return

            self.state = SubscriberState.CONNECTING
            try:
                await self._connect()
            except Exception as e:
                self.state = SubscriberState.DISCONNECTED
                await self._release_connection_quietly()
                logger.warning(
                    "Subscriber reconnection attempt failed",
                    extra={
                        "attempt": self._reconnect_attempts,
                        "error": str(e),
                        "operation": "subscriber_reconnect_failed",
                    },
                )
                continue

            self._reconnect_task = None
            logger.info(
                "Subscriber client ready",
                extra={
                    "channels": self.get_subscribed_channels(),
                    "operation": "subscriber_ready",
                },
            )
            return

        self.state = SubscriberState.EXHAUSTED
        self._reconnect_task = None
        logger.warning(
            f"Redis subscriber reconnection attempts exhausted after {self._reconnect_attempts} retries",
            extra={
                "attempts": self._reconnect_attempts,
                "channels": self.get_subscribed_channels(),
                "operation": "subscriber_reconnect_exhausted",
            },
        )

    async def _release_connection(self) -> None:
        pubsub, client = self._pubsub, self._client
        self._pubsub = None
        self._client = None
        try:
            if pubsub is not None:
                await pubsub.aclose()
        finally:
            if client is not None:
                await client.aclose()

    async def _release_connection_quietly(self) -> None:
        try:
            await self._release_connection()
        except Exception as e:
            logger.debug(
                "Ignoring error while releasing subscriber connection",
                extra={"error": str(e)},
            )

    # ==============================================
    # MESSAGE DELIVERY
    # ==============================================

    def _ensure_worker(self, channel: str) -> None:
        if channel in self._workers:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[channel] = queue
        self._workers[channel] = asyncio.create_task(
            self._consume(channel, queue), name=f"redis-subscriber:{channel}"
        )

    def _stop_worker(self, channel: str) -> None:
        self._queues.pop(channel, None)
        task = self._workers.pop(channel, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _consume(self, channel: str, queue: asyncio.Queue) -> None:
        while True:
            raw = await queue.get()
            try:
                await self._handle_message(channel, raw)
            finally:
                queue.task_done()

    async def _handle_message(self, channel: str, raw: Any) -> None:
        """Decode one message and run the channel callback; never raises"""
        payload_size = _payload_size(raw)
        logger.info(
            f"Message received from channel {channel}",
            extra={"channel": channel, "payload_size": payload_size},
        )

        try:
            event = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(
                f"Failed to parse message from channel {channel}",
                extra={
                    "channel": channel,
                    "payload_size": payload_size,
                    "error": str(e),
                    "operation": "message_parse_failed",
                },
            )
            return

        handler = self._handlers.get(channel)
        if handler is None:
            logger.warning(
                f"No handler found for channel: {channel}",
                extra={"channel": channel},
            )
            return

        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Handler error for channel {channel}",
                extra={
                    "channel": channel,
                    "error": str(e),
                    "operation": "handler_error",
                },
                exc_info=True,
            )

    @staticmethod
    async def _cancel_tasks(tasks: List[Optional[asyncio.Task]]) -> None:
        current = asyncio.current_task()
        pending = [t for t in tasks if t is not None and t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
