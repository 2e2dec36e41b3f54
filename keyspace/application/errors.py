"""Process-wide reporting of errors that are contained instead of raised."""

import logging
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)

ErrorHandler = Callable[[object, BaseException], None]


class ErrorReporter:
    """Hook for failures that must not interrupt ongoing traffic.

    Notification handling failures, listener failures and swallowed teardown
    errors are never raised to the caller that happened to trigger them.
    They are handed to the reporter instead, which logs them and forwards
    them to every registered handler in registration order. A failing handler
    is logged and does not prevent the remaining handlers from running.

    Examples:
        >>> reporter = ErrorReporter()
        >>> reporter.add_handler(lambda source, error: sentry.capture(error))
        >>> reporter.report(subscriber, ValueError("bad payload"))
    """

    def __init__(self) -> None:
        self._handlers: list[ErrorHandler] = []

    def add_handler(self, handler: ErrorHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: ErrorHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def report(self, source: object, error: BaseException) -> None:
        LOGGER.error(
            "Contained error",
            exc_info=error,
            extra={"source": type(source).__name__, "error_type": type(error).__name__},
        )
        for handler in list(self._handlers):
            try:
                handler(source, error)
            except Exception:
                LOGGER.exception("Error handler failed", extra={"handler": repr(handler)})
