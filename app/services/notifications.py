"""Notification dispatcher.

State-changing services call these hooks after their commit. Dispatch is
fire-and-forget: a broken broker or webhook endpoint is logged and never
propagates back into the order mutation that triggered it.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from app.models.order import Order
from app.models.user import ClientUser
from app.services.order_state import describe

logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
PAYMENT_SUCCEEDED = "payment.succeeded"
CLIENT_CREATED = "client.created"


class NotificationDispatcher(ABC):

    def on_new_order(self, order: Order) -> None:
        payload = describe(order)
        payload["client_id"] = order.client_id
        payload["delivery_date"] = order.delivery_date.isoformat() if order.delivery_date else None
        self._safe_dispatch(ORDER_CREATED, payload)

    def on_order_status_changed(self, order: Order, previous_status) -> None:
        self._safe_dispatch(ORDER_STATUS_CHANGED, describe(order, previous_status))

    def on_payment_success(self, order: Order) -> None:
        payload = describe(order)
        payload["gateway_order_id"] = order.gateway_order_id
        self._safe_dispatch(PAYMENT_SUCCEEDED, payload)

    def on_client_created(self, client: ClientUser, temporary_password: Optional[str]) -> None:
        self._safe_dispatch(CLIENT_CREATED, {
            "client_id": client.id,
            "email": client.email,
            "name": client.name,
            "temporary_password": temporary_password,
        })

    def _safe_dispatch(self, event: str, payload: dict) -> None:
        try:
            self.dispatch(event, payload)
        except Exception as e:
            logger.warning(f"Notification {event} could not be dispatched: {e}")

    @abstractmethod
    def dispatch(self, event: str, payload: dict) -> None:
        """Hand one event to the transport."""


class CeleryNotificationDispatcher(NotificationDispatcher):
    """Queues delivery on the notifications Celery queue."""

    def dispatch(self, event: str, payload: dict) -> None:
        from app.services.tasks import deliver_notification
        deliver_notification.delay(event, payload)


_default_dispatcher = CeleryNotificationDispatcher()


def get_notifier() -> NotificationDispatcher:
    return _default_dispatcher
