"""
Unit tests for handler retry, dead-lettering and envelope validation.
"""

import json
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from event_service.app.events.event_handler import EventHandler, execute_with_retry
from event_service.app.events.schemas import (
    DLQ_CHANNEL,
    DeadLetterEvent,
    ProductDeletedEvent,
    ProductDeletedEventData,
)


class FlakyHandler(EventHandler[ProductDeletedEvent]):
    """Fails ``failures`` times before succeeding"""

    max_retries = 3

    def __init__(self, failures: int, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = 0

    async def handle(self, event: ProductDeletedEvent) -> None:
        self.log_event_received(event)

        async def process() -> None:
            self.calls += 1
            if self.calls <= self.failures:
                raise RuntimeError(f"failure {self.calls}")

        await self.process_with_retry(event, process)
        self.log_event_success(event)


@pytest.fixture
def event():
    return ProductDeletedEvent(payload=ProductDeletedEventData(product_id="p1"))


@pytest.fixture
def mock_publisher():
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=1)
    return publisher


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_backoff_doubles_between_attempts(self):
        operation = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), None])

        with patch(
            "event_service.app.events.event_handler.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await execute_with_retry(operation, "evt_1", max_retries=3, retry_delay=1.0)

        assert operation.await_count == 3
        assert mock_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        errors = [RuntimeError("first"), RuntimeError("second")]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(RuntimeError) as exc_info:
            await execute_with_retry(operation, "evt_1", max_retries=2, retry_delay=0)

        assert exc_info.value is errors[1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [0, -1])
    async def test_non_positive_max_retries_still_attempts_once(self, max_retries):
        operation = AsyncMock(side_effect=RuntimeError("nope"))

        with pytest.raises(RuntimeError):
            await execute_with_retry(operation, "evt_1", max_retries=max_retries, retry_delay=0)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_logs_each_failed_attempt(self, caplog):
        operation = AsyncMock(side_effect=[RuntimeError("a"), None])

        await execute_with_retry(operation, "evt_1", max_retries=3, retry_delay=0)

        assert "Event handling failed, attempt 1/3" in caplog.text
        assert "after all retries" not in caplog.text


class TestProcessWithRetry:
    @pytest.mark.asyncio
    async def test_recovers_before_retries_run_out(self, event, mock_publisher):
        handler = FlakyHandler(failures=2, publisher=mock_publisher, retry_delay=0)

        await handler.handle(event)

        assert handler.calls == 3
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_terminal_failure_dead_letters_once(self, event, mock_publisher, caplog):
        handler = FlakyHandler(failures=10, publisher=mock_publisher, retry_delay=0)

        with pytest.raises(RuntimeError, match="failure 3"):
            await handler.handle(event)

        assert handler.calls == 3
        mock_publisher.publish.assert_awaited_once()
        channel, dead_letter = mock_publisher.publish.await_args.args
        assert channel == DLQ_CHANNEL
        assert isinstance(dead_letter, DeadLetterEvent)
        assert dead_letter.original_event == event.to_wire()
        assert dead_letter.error.message == "failure 3"
        assert f"Event moved to DLQ: {event.event_id} (PRODUCT_DELETED)" in caplog.text
        assert "Successfully processed" not in caplog.text

    @pytest.mark.asyncio
    async def test_dead_letter_is_json_serializable(self, event, mock_publisher):
        handler = FlakyHandler(failures=10, publisher=mock_publisher, retry_delay=0)

        with pytest.raises(RuntimeError):
            await handler.handle(event)

        dead_letter = mock_publisher.publish.await_args.args[1]
        decoded = json.loads(dead_letter.model_dump_json(by_alias=True))
        assert decoded["originalEvent"]["eventId"] == event.event_id
        assert decoded["error"]["errorType"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_without_publisher_dead_letter_is_only_logged(self, event, caplog):
        handler = FlakyHandler(failures=10, retry_delay=0)

        with pytest.raises(RuntimeError):
            await handler.handle(event)

        assert "Event moved to DLQ" in caplog.text

    @pytest.mark.asyncio
    async def test_dlq_publish_failure_is_swallowed(self, event, mock_publisher, caplog):
        mock_publisher.publish.side_effect = ConnectionError("broker down")
        handler = FlakyHandler(failures=10, publisher=mock_publisher, retry_delay=0)

        with pytest.raises(RuntimeError, match="failure 3"):
            await handler.handle(event)

        assert "Failed to publish event to DLQ" in caplog.text

    @pytest.mark.asyncio
    async def test_retry_delay_defaults_to_settings(self):
        handler = FlakyHandler(failures=0)

        assert handler.retry_delay == 0


class TestValidateEvent:
    def test_accepts_typed_event(self, event):
        assert EventHandler.validate_event(event) is True

    @pytest.mark.parametrize(
        "candidate",
        [
            {"eventId": "evt_1", "eventType": "PRODUCT_CREATED", "timestamp": "2024-02-01T10:00:00Z"},
            {"event_id": "evt_1", "event_type": "PRODUCT_CREATED", "timestamp": "2024-02-01T10:00:00+00:00"},
        ],
    )
    def test_accepts_well_formed_mapping(self, candidate):
        assert EventHandler.validate_event(candidate) is True

    @pytest.mark.parametrize(
        "candidate",
        [
            None,
            "evt_1",
            42,
            {},
            {"eventType": "PRODUCT_CREATED", "timestamp": "2024-02-01T10:00:00Z"},
            {"eventId": "", "eventType": "PRODUCT_CREATED", "timestamp": "2024-02-01T10:00:00Z"},
            {"eventId": "evt_1", "eventType": 7, "timestamp": "2024-02-01T10:00:00Z"},
            {"eventId": "evt_1", "eventType": "PRODUCT_CREATED"},
            {"eventId": "evt_1", "eventType": "PRODUCT_CREATED", "timestamp": "yesterday"},
        ],
    )
    def test_rejects_malformed_candidates(self, candidate):
        assert EventHandler.validate_event(candidate) is False
