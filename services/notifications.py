import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from tasks.notification_tasks import send_push_notification_task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    destination: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationGateway:
    """Fire-and-forget push delivery.

    Messages are handed to the Celery worker; a broker outage or a bad
    destination is logged and never reaches the caller.
    """

    def notify(self, destination: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not destination:
            logger.warning("Dropping notification %r: no destination", title)
            return
        try:
            send_push_notification_task.delay(destination, title, body, data or {})
        except Exception as exc:
            logger.warning("Could not queue notification %r for %s: %s", title, destination, exc)

    def dispatch(self, notification: Notification) -> None:
        self.notify(notification.destination, notification.title, notification.body, notification.data)
