"""Server-Sent-Events subscriptions for ``subscription`` endpoints."""

from lavs.subscriptions.manager import Subscription, SubscriptionEvent, SubscriptionManager
from lavs.subscriptions.sinks import (
    QueueSink,
    SinkClosedError,
    SubscriptionSink,
    encode_comment,
    encode_event,
)

__all__ = [
    "QueueSink",
    "SinkClosedError",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionManager",
    "SubscriptionSink",
    "encode_comment",
    "encode_event",
]
