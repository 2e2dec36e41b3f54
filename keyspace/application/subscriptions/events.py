"""Notification modes and the events delivered to subscription listeners."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Union

from ...domain import Document


class SubscriptionMode(str, Enum):
    """Where change notifications come from.

    Attributes:
        KEYSPACE: Server keyspace notifications. The payload is only the
            operation (`set` or `del`); the value is fetched separately.
        PUBSUB: Plain publish/subscribe on a channel named by the pattern.
            The payload is the full serialized document.
    """

    KEYSPACE = "keyspace"
    PUBSUB = "pubsub"


@dataclass(frozen=True)
class CacheChanged:
    """A notification replaced what the local cache held for a document."""

    document: Document
    channel: str


@dataclass(frozen=True)
class SubscriptionTriggered:
    """A notification for a document was received and resolved."""

    document: Document
    channel: str


NotificationEvent = Union[CacheChanged, SubscriptionTriggered]

NotificationListener = Callable[[NotificationEvent], Awaitable[None]]
