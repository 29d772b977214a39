# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Powiadomienia o zamowieniach przez Celery.
    Wysylka jest best effort: zamowienie jest juz zapisane, blad brokera tylko logujemy.
    """

    @staticmethod
    def send_order_placed(user_id: str, order_id: str, total_amount: str):
        try:
            send_order_placed_task.delay(user_id, order_id, total_amount)
        except Exception as e:
            logger.warning(f"Failed to enqueue order placed notification for {order_id}: {e}")

    @staticmethod
    def send_status_changed(user_id: str, order_id: str, status: str):
        try:
            send_status_changed_task.delay(user_id, order_id, status)
        except Exception as e:
            logger.warning(f"Failed to enqueue status notification for {order_id}: {e}")


@celery_app.task(name="storefront.services.notification_service.send_order_placed_task")
def send_order_placed_task(user_id: str, order_id: str, total_amount: str):
    logger.info(f"[NOTIFICATION] User {user_id}: order {order_id} placed, total {total_amount}")
    return {"user_id": user_id, "order_id": order_id, "status": "sent"}


@celery_app.task(name="storefront.services.notification_service.send_status_changed_task")
def send_status_changed_task(user_id: str, order_id: str, status: str):
    logger.info(f"[NOTIFICATION] User {user_id}: order {order_id} is now {status}")
    return {"user_id": user_id, "order_id": order_id, "status": status}
