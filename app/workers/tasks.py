from typing import Dict, Any
import logging
import asyncio

from app.workers.celery_app import celery_app
from app.infrastructure.notifications import send_notification, build_release_message

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, name="app.workers.tasks.send_result_released_notification")
def send_result_released_notification(self, payload: Dict[str, Any]):
    """Tell the patient their diagnostic result has been released"""
    recipient = payload.get("patient_phone") or payload.get("patient_id")
    try:
        message = build_release_message(payload)
        logger.info(f"Sending release notification for result {payload.get('result_id')} to {recipient}")

        outcome = asyncio.run(
            send_notification(
                recipient=recipient,
                subject=message["subject"],
                body=message["body"],
                channel="sms" if payload.get("patient_phone") else "in_app",
            )
        )
        if outcome.get("status") != "sent":
            raise RuntimeError(outcome.get("error") or "notification not sent")

        return {"status": "success", "result_id": payload.get("result_id")}

    except Exception as exc:
        logger.error(f"Failed to send release notification for result {payload.get('result_id')}: {exc}")
        # Retry with exponential backoff
        countdown = 2 ** self.request.retries
        raise self.retry(exc=exc, countdown=countdown)
