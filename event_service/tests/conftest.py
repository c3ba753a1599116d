"""
Pytest configuration and fixtures for event service tests.

Redis is replaced by a small in-memory broker so subscriptions, fan-out and
dropped connections can be exercised without a running server.
"""

import asyncio
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

# Set up test environment variables before importing anything else
os.environ.setdefault("APP_NAME", "Event Service Test")
os.environ.setdefault("APP_VERSION", "1.0.0")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SERVICE_NAME", "event-service")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("REDIS_DISABLED", "false")
os.environ.setdefault("SUBSCRIBER_MAX_RECONNECT_ATTEMPTS", "5")
os.environ.setdefault("SUBSCRIBER_RECONNECT_DELAY", "0")
os.environ.setdefault("SUBSCRIBER_POLL_TIMEOUT", "0.01")
os.environ.setdefault("HANDLER_RETRY_DELAY", "0")

from event_service.app.events.base.redis_client import (  # noqa: E402
    RedisEventPublisher,
    RedisEventSubscriber,
)


class FakePubSub:
    """Subscription connection of the in-memory broker"""

    def __init__(self, broker: "FakeBroker"):
        self.broker = broker
        self.channels: set = set()
        self.subscribe_calls: List[Tuple[str, ...]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def subscribed(self) -> bool:
        return bool(self.channels)

    async def subscribe(self, *channels: str) -> None:
        if self.broker.fail_subscribe:
            raise RedisConnectionError("subscribe rejected")
        self.subscribe_calls.append(channels)
        self.channels.update(channels)

    async def unsubscribe(self, *channels: str) -> None:
        self.channels.difference_update(channels)

    def deliver(self, channel: str, data: Any) -> None:
        self._inbox.put_nowait(
            {"type": "message", "pattern": None, "channel": channel, "data": data}
        )

    def drop_connection(self) -> None:
        self._inbox.put_nowait(RedisConnectionError("Connection closed by server."))

    async def get_message(
        self, ignore_subscribe_messages: bool = False, timeout: Optional[float] = 0.0
    ) -> Optional[Dict[str, Any]]:
        try:
            item = await asyncio.wait_for(self._inbox.get(), timeout or 0.01)
        except asyncio.TimeoutError:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True
        self.channels.clear()


class FakeRedis:
    """Client of the in-memory broker"""

    def __init__(self, broker: "FakeBroker"):
        self.broker = broker
        self.closed = False

    async def ping(self) -> bool:
        if self.broker.failing_pings > 0:
            self.broker.failing_pings -= 1
            raise RedisConnectionError("Error connecting to localhost:6379")
        return True

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        pubsub = FakePubSub(self.broker)
        self.broker.pubsubs.append(pubsub)
        return pubsub

    async def publish(self, channel: str, message: str) -> int:
        return self.broker.route(channel, message)

    async def aclose(self) -> None:
        self.closed = True


class FakeBroker:
    """Fans published messages out to every open subscription"""

    def __init__(self):
        self.pubsubs: List[FakePubSub] = []
        self.clients: List[FakeRedis] = []
        self.published: List[Tuple[str, str]] = []
        self.failing_pings = 0
        self.fail_subscribe = False

    def client(self) -> FakeRedis:
        client = FakeRedis(self)
        self.clients.append(client)
        return client

    @property
    def active_pubsub(self) -> Optional[FakePubSub]:
        open_pubsubs = [p for p in self.pubsubs if not p.closed]
        return open_pubsubs[-1] if open_pubsubs else None

    def route(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        receivers = 0
        for pubsub in self.pubsubs:
            if not pubsub.closed and channel in pubsub.channels:
                pubsub.deliver(channel, message)
                receivers += 1
        return receivers

    def messages_on(self, channel: str) -> List[str]:
        return [message for name, message in self.published if name == channel]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until():
    """Poll a condition while letting background tasks run"""
    return _wait_until


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest_asyncio.fixture
async def subscriber(broker: FakeBroker):
    """Uninitialized subscriber wired to the in-memory broker"""
    instance = RedisEventSubscriber(
        max_reconnect_attempts=5,
        reconnect_delay=0,
        poll_timeout=0.01,
        enabled=True,
        client_factory=broker.client,
    )
    yield instance
    await instance.disconnect()


@pytest_asyncio.fixture
async def connected_subscriber(subscriber: RedisEventSubscriber):
    await subscriber.initialize()
    return subscriber


@pytest.fixture
def publisher(broker: FakeBroker) -> RedisEventPublisher:
    """Publisher sharing the in-memory broker with the subscriber"""
    return RedisEventPublisher(client=broker.client())  # type: ignore[arg-type]
