"""Pub/sub error types"""


class PubSubError(Exception):
    """Base error for the pub/sub subsystem"""


class EventSerializationError(PubSubError):
    """Raised when an event cannot be encoded for the wire"""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Cannot serialize message for channel {channel}: {reason}")


class SubscriberNotInitializedError(PubSubError):
    """Raised when subscribing before ``initialize()``"""


class SubscriberConnectionError(PubSubError):
    """Raised when the broker connection cannot accept a subscription"""
