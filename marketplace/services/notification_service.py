# marketplace/services/notification_service.py
import requests

from marketplace.celery_worker import celery_app
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import http_retry
from marketplace.utils.settings import GATEWAY_TIMEOUT_SECONDS, NOTIFICATION_WEBHOOK_URL

logger = get_logger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
PAYMENT_FAILED = "payment.failed"


class NotificationService:
    """
    Emits domain events. Delivery (email/SMS/push) belongs to the
    notification collaborator; events are handed over through Celery.
    """

    def publish(self, event: str, payload: dict) -> None:
        try:
            publish_event_task.delay(event, payload)
        except Exception as e:
            # the business change is already committed; a broker outage must not undo it
            logger.error(f"Failed to enqueue {event}: {e}")

    def order_created(self, order) -> None:
        self.publish(
            ORDER_CREATED,
            {
                "order_id": order.id,
                "checkout_id": order.checkout_id,
                "customer_id": order.customer_id,
                "chef_id": order.chef_id,
                "final_amount": str(order.final_amount),
            },
        )

    def status_changed(self, order, previous: str) -> None:
        self.publish(
            ORDER_STATUS_CHANGED,
            {
                "order_id": order.id,
                "customer_id": order.customer_id,
                "chef_id": order.chef_id,
                "previous": previous,
                "status": order.status,
            },
        )

    def payment_failed(self, order, reason: str | None = None) -> None:
        self.publish(
            PAYMENT_FAILED,
            {
                "order_id": order.id,
                "customer_id": order.customer_id,
                "payment_intent_id": order.payment_intent_id,
                "reason": reason,
            },
        )


@http_retry()
def _post_event(url: str, event: str, payload: dict) -> None:
    response = requests.post(
        url,
        json={"event": event, "payload": payload},
        timeout=GATEWAY_TIMEOUT_SECONDS,
    )
    response.raise_for_status()


@celery_app.task(name="marketplace.services.notification_service.publish_event_task")
def publish_event_task(event: str, payload: dict, url: str | None = None):
    target = NOTIFICATION_WEBHOOK_URL if url is None else url
    if not target:
        logger.info(f"[EVENT] {event} {payload}")
        return {"event": event, "status": "logged"}

    _post_event(target, event, payload)
    logger.info(f"[EVENT] {event} forwarded to notification webhook")
    return {"event": event, "status": "sent"}
