"""
Event Service Event Consumers
=============================

Concrete handlers for product lifecycle and user activity events. Product
handlers only record the change for now; cache invalidation and search
indexing hook in here later. The audit handler writes the audit trail.
"""

from typing import Any, Dict

from ..core.setting import get_settings
from ..utils.logging import setup_event_logging
from .event_handler import EventHandler
from .schemas import (
    ProductCreatedEvent,
    ProductDeletedEvent,
    ProductUpdatedEvent,
    UserActivityEvent,
)

logger = setup_event_logging(
    "event_service_consumers", log_level=get_settings().LOG_LEVEL
)

SECURITY_SENSITIVE_ACTIONS = frozenset(
    [
        "LOGIN_FAILED",
        "PASSWORD_CHANGED",
        "PERMISSION_CHANGED",
        "ADMIN_ACTION",
        "DATA_EXPORT",
        "SETTINGS_CHANGED",
    ]
)

IMMEDIATE_ALERT_ACTIONS = frozenset(
    [
        "LOGIN_FAILED_MULTIPLE",
        "UNAUTHORIZED_ACCESS_ATTEMPT",
        "PRIVILEGE_ESCALATION",
        "DATA_BREACH_POTENTIAL",
    ]
)


class ProductCreatedHandler(EventHandler[ProductCreatedEvent]):
    """Handle product created events"""

    max_retries = 3
    default_logger = logger

    async def handle(self, event: ProductCreatedEvent) -> None:
        self.log_event_received(event)

        async def process() -> None:
            self.logger.info(
                "Product created - processing event",
                extra={
                    "event_id": event.event_id,
                    "product_id": event.payload.product_id,
                    "product_name": event.payload.name,
                    "price": event.payload.price,
                    "category": event.payload.category,
                    "correlation_id": event.correlation_id,
                },
            )

        await self.process_with_retry(event, process)
        self.log_event_success(event)


class ProductUpdatedHandler(EventHandler[ProductUpdatedEvent]):
    """Handle product updated events"""

    max_retries = 3
    default_logger = logger

    async def handle(self, event: ProductUpdatedEvent) -> None:
        self.log_event_received(event)

        async def process() -> None:
            self.logger.info(
                "Product updated - processing event",
                extra={
                    "event_id": event.event_id,
                    "product_id": event.payload.product_id,
                    "changes": event.payload.changes,
                    "changed_fields": sorted(event.payload.changes),
                    "correlation_id": event.correlation_id,
                },
            )

        await self.process_with_retry(event, process)
        self.log_event_success(event)


class ProductDeletedHandler(EventHandler[ProductDeletedEvent]):
    """Handle product deleted events"""

    max_retries = 3
    default_logger = logger

    async def handle(self, event: ProductDeletedEvent) -> None:
        self.log_event_received(event)

        async def process() -> None:
            self.logger.info(
                "Product deleted - processing event",
                extra={
                    "event_id": event.event_id,
                    "product_id": event.payload.product_id,
                    "correlation_id": event.correlation_id,
                },
            )

        await self.process_with_retry(event, process)
        self.log_event_success(event)


class AuditEventHandler(EventHandler[UserActivityEvent]):
    """
    Write user activity events to the audit trail.

    Retries more than the product handlers since a lost audit entry costs
    more than a lost cache refresh.
    """

    max_retries = 5
    default_logger = logger

    async def handle(self, event: UserActivityEvent) -> None:
        self.log_event_received(event)

        async def record() -> None:
            audit_record = self.build_audit_record(event)
            self.logger.info(
                f"AUDIT: {event.payload.action}",
                extra={
                    "audit": True,
                    "event_id": event.event_id,
                    "correlation_id": event.correlation_id,
                    "audit_record": audit_record,
                },
            )

            if audit_record["requires_alert"]:
                self.logger.warning(
                    f"Audit action requires immediate alert: {event.payload.action}",
                    extra={
                        "event_id": event.event_id,
                        "user_id": event.payload.user_id,
                        "action": event.payload.action,
                        "correlation_id": event.correlation_id,
                    },
                )

        await self.process_with_retry(event, record)
        self.log_event_success(event)

    def build_audit_record(self, event: UserActivityEvent) -> Dict[str, Any]:
        action = event.payload.action
        return {
            "audit": True,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "user_id": event.payload.user_id,
            "action": action,
            "timestamp": event.timestamp.isoformat(),
            "correlation_id": event.correlation_id,
            "metadata": dict(event.payload.metadata),
            "security_sensitive": self.is_security_sensitive_action(action),
            "requires_alert": self.requires_immediate_alert(action),
        }

    @staticmethod
    def is_security_sensitive_action(action: str) -> bool:
        return action in SECURITY_SENSITIVE_ACTIONS

    @staticmethod
    def requires_immediate_alert(action: str) -> bool:
        return action in IMMEDIATE_ALERT_ACTIONS
