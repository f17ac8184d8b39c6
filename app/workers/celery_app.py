from celery import Celery
import os
from app.core.config import settings

celery_app = Celery(
    "diagnostic_workboard",
    broker=settings.REDIS_URL,
    include=["app.workers.tasks"]
)

# Release notifications are fire-and-forget; nothing reads task results.
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,

    task_default_queue="notifications",
    task_routes={
        "app.workers.tasks.send_result_released_notification": {"queue": "notifications"},
    },

    # A lost worker must not drop a patient notification
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    broker_connection_retry_on_startup=True,
)

if os.getenv("ENVIRONMENT") == "production":
    celery_app.conf.update(
        worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
        worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
        worker_concurrency=4,
    )


if __name__ == "__main__":
    celery_app.start()
