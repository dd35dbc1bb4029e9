"""
NotificationDispatcher -- fire-and-forget delivery of lifecycle notifications.

Notifications are a side channel: a failing port must never fail or roll
back the ledger change that triggered it.  Delivery errors are logged as
``notification_failed`` and dropped.
"""

from journal_kernel.domain.ports import JournalNotification, NotificationPort
from journal_kernel.logging_config import get_logger

logger = get_logger("services.notification")


class NotificationDispatcher:
    """Wraps an optional NotificationPort."""

    def __init__(self, port: NotificationPort | None = None):
        self._port = port

    def dispatch(self, notification: JournalNotification) -> bool:
        """Send ``notification``.  Returns False if it was not delivered."""
        if self._port is None:
            return False
        try:
            self._port.send(notification)
        except Exception as exc:
            logger.warning(
                "notification_failed",
                extra={
                    **notification.scope.log_fields(),
                    "kind": notification.kind.value,
                    "entry_id": str(notification.entry_id),
                    "reference": notification.reference,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

        logger.debug(
            "notification_sent",
            extra={
                "kind": notification.kind.value,
                "entry_id": str(notification.entry_id),
                "recipients": list(notification.recipients),
            },
        )
        return True
