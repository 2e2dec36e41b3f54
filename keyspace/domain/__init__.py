from .document import Document, utc_now
from .exceptions import (
    BackendError,
    BackendUnavailableError,
    InvalidKeyError,
    KeyspaceError,
    NotificationHandlingError,
)

__all__ = [
    "Document",
    "utc_now",
    "KeyspaceError",
    "InvalidKeyError",
    "BackendError",
    "BackendUnavailableError",
    "NotificationHandlingError",
]
