from celery import Celery
from core.config import settings

# Redis carries both the broker and the result backend
celery_app = Celery(
    "payment_settlement",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tasks.notification_tasks"]
)

# Push notifications are small and best-effort
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=2 * 60,
    task_soft_time_limit=90,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_always_eager=False,
    task_eager_propagates=False,
)
