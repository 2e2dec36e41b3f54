"""Exceptions raised by keyspace repositories and backends."""


class KeyspaceError(Exception):
    """Base class for all keyspace errors."""

    pass


class InvalidKeyError(KeyspaceError, ValueError):
    """Raised when a key, pattern, or document id cannot be resolved."""

    pass


class BackendError(KeyspaceError):
    """Raised when a single backend primitive fails.

    Backends translate driver-specific failures (connection refused, timeouts,
    protocol errors) into this exception so that callers can decide whether to
    retry without knowing which driver is in use.
    """

    pass


class BackendUnavailableError(BackendError):
    """Raised when a read could not be completed after all retry attempts.

    Attributes:
        key: The fully-qualified key that was being read.
        attempts: How many attempts were made before giving up.
    """

    def __init__(self, key: str, attempts: int):
        super().__init__(f"Backend unavailable while reading '{key}' after {attempts} attempts")
        self.key = key
        self.attempts = attempts


class NotificationHandlingError(KeyspaceError):
    """Wraps a failure that happened while applying a change notification.

    These are never raised to callers. They are passed to the error reporter
    with the implicated key so that handlers can correlate them.

    Attributes:
        key: The key the notification referred to.
        channel: The channel the notification arrived on.
    """

    def __init__(self, key: str, channel: str):
        super().__init__(f"Failed to apply notification for '{key}' on channel '{channel}'")
        self.key = key
        self.channel = channel
