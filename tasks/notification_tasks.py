import logging

import requests

from core.celery import celery_app
from core.config import settings

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_push_notification_task(self, destination: str, title: str, body: str, data: dict | None = None):
    """
    Deliver one push message through the Expo push service.
    Retries with backoff inside the worker; gives up quietly afterwards.
    """
    if settings.TESTING:
        logger.info("Push to %s skipped in testing mode: %s - %s", destination, title, body)
        return {"status": "debug", "message": "Push skipped in testing mode"}

    message = {
        "to": destination,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data or {},
    }
    try:
        resp = requests.post(
            settings.EXPO_PUSH_URL,
            json=message,
            headers={
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "Content-Type": "application/json",
            },
            timeout=settings.EXPO_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Push notification to %s failed: %s", destination, exc)
        if self.request.retries < self.max_retries:
            # Retry with exponential backoff
            countdown = min(2 ** self.request.retries, 60)
            raise self.retry(exc=exc, countdown=countdown)
        return {"status": "failed", "error": str(exc)}

    logger.info("Notification sent to %s: %s - %s", destination, title, body)
    return {"status": "sent", "to": destination}
