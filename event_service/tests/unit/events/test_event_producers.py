"""
Unit tests for the product event producer.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from event_service.app.events.event_producers import ProductEventProducer
from event_service.app.events.schemas import (
    AUDIT_CHANNEL,
    PRODUCT_CHANNEL,
    ProductCreatedEvent,
    ProductDeletedEvent,
    ProductUpdatedEvent,
    UserActivityEvent,
)


@pytest.fixture
def mock_publisher():
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=1)
    return publisher


@pytest.fixture
def producer(mock_publisher):
    return ProductEventProducer(mock_publisher)


class TestProductEventProducer:
    @pytest.mark.asyncio
    async def test_publish_product_created(self, producer, mock_publisher):
        event = await producer.publish_product_created(
            "p1", "Headphones", 199.99, "Electronics", correlation_id="req-1"
        )

        assert isinstance(event, ProductCreatedEvent)
        assert event.payload.name == "Headphones"
        assert event.correlation_id == "req-1"
        mock_publisher.publish.assert_awaited_once_with(PRODUCT_CHANNEL, event)

    @pytest.mark.asyncio
    async def test_publish_product_updated(self, producer, mock_publisher):
        event = await producer.publish_product_updated("p1", {"price": 149.99})

        assert isinstance(event, ProductUpdatedEvent)
        assert event.payload.changes == {"price": 149.99}
        mock_publisher.publish.assert_awaited_once_with(PRODUCT_CHANNEL, event)

    @pytest.mark.asyncio
    async def test_publish_product_deleted(self, producer, mock_publisher):
        event = await producer.publish_product_deleted("p1")

        assert isinstance(event, ProductDeletedEvent)
        mock_publisher.publish.assert_awaited_once_with(PRODUCT_CHANNEL, event)

    @pytest.mark.asyncio
    async def test_publish_user_activity_goes_to_audit_channel(self, producer, mock_publisher):
        event = await producer.publish_user_activity("u1", "LOGIN_SUCCESS")

        assert isinstance(event, UserActivityEvent)
        assert event.payload.metadata == {}
        mock_publisher.publish.assert_awaited_once_with(AUDIT_CHANNEL, event)

    @pytest.mark.asyncio
    async def test_each_call_creates_a_new_event(self, producer):
        first = await producer.publish_product_deleted("p1")
        second = await producer.publish_product_deleted("p1")

        assert first.event_id != second.event_id

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_not_raised(self, producer, mock_publisher, caplog):
        mock_publisher.publish.side_effect = RedisConnectionError("down")

        event = await producer.publish_product_deleted("p1")

        assert event is None
        assert "Failed to publish PRODUCT_DELETED event" in caplog.text
