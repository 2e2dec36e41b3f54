"""Change-notification subscriptions that keep the local cache coherent.

This package provides:
- InvalidationSubscriber: Applies keyspace or pub/sub notifications to the cache
- SubscriptionMode: Notification source (keyspace notifications or pub/sub)
- CacheChanged / SubscriptionTriggered: Events delivered to listeners
"""

from .events import (
    CacheChanged,
    NotificationEvent,
    NotificationListener,
    SubscriptionMode,
    SubscriptionTriggered,
)
from .subscriber import InvalidationSubscriber

__all__ = [
    "InvalidationSubscriber",
    "SubscriptionMode",
    "CacheChanged",
    "SubscriptionTriggered",
    "NotificationEvent",
    "NotificationListener",
]
