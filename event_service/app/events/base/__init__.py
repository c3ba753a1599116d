"""
Event Service base classes and interfaces.

Defines the event envelope shared by every event on the wire together with
the abstract publisher and subscriber contracts implemented by the Redis
transport.
"""

import secrets
import string
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_event_id() -> str:
    """Return a unique event id in the form ``evt_<epoch ms>_<random base36>``"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(13))
    return f"evt_{int(time.time() * 1000)}_{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventModel(BaseModel):
    """Base model for everything that travels over a channel.

    Attributes use snake_case in Python and camelCase on the wire. Unknown
    incoming fields are ignored so new payload fields stay additive.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys"""
        return self.model_dump(mode="json", by_alias=True)


class BaseEvent(EventModel):
    """Envelope common to all domain events"""

    event_id: str = Field(default_factory=generate_event_id)
    event_type: str
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: Optional[str] = None


MessageCallback = Callable[[Any], Union[Awaitable[None], None]]


class EventPublisher(ABC):
    """Abstract base class for event publishers"""

    @abstractmethod
    async def publish(self, channel: str, event: Any) -> int:
        """Publish an event to a channel"""


class EventSubscriber(ABC):
    """Abstract base class for event subscribers"""

    @abstractmethod
    async def initialize(self) -> None:
        """Open the subscription connection"""

    @abstractmethod
    async def subscribe(self, channel: str, handler: MessageCallback) -> None:
        """Register the single callback for a channel"""

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        """Stop receiving messages from a channel"""

    @abstractmethod
    async def disconnect(self) -> None:
        """Drop every subscription and release the connection"""

    @abstractmethod
    def get_connection_status(self) -> bool:
        """Whether the subscription connection is ready"""

    @abstractmethod
    def get_subscribed_channels(self) -> List[str]:
        """Channels with a registered callback"""
