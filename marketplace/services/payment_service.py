# marketplace/services/payment_service.py
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session
from tenacity import RetryError

from marketplace.data.models.order import OrderModel
from marketplace.domain import order_states as states
from marketplace.domain import pricing
from marketplace.domain.errors import (
    ConflictError,
    ErrorCode,
    GatewayFailure,
    NotAuthorized,
    NotFoundError,
    ValidationFailed,
)
from marketplace.domain.order_states import PaymentStatus
from marketplace.domain.principal import CUSTOMER, Principal
from marketplace.services.gateway import port
from marketplace.services.gateway.port import PaymentGateway
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService, order_to_view
from marketplace.utils.clock import utcnow
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import poll_retrying
from marketplace.utils.settings import (
    DEFAULT_CURRENCY,
    PAYMENT_RETRY_ATTEMPTS,
    PAYMENT_RETRY_BASE_SECONDS,
)

logger = get_logger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")
INCOMPLETE_STATUSES = (port.REQUIRES_PAYMENT_METHOD, port.REQUIRES_CONFIRMATION)
FAILED_STATUSES = (port.CANCELED, port.PAYMENT_FAILED)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"
EVENT_CANCELED = "payment_intent.canceled"


class PaymentService:
    """
    Keeps orders in step with the payment gateway.

    Gateway transport errors surface as GatewayTimeout / GatewayFailure,
    business rules as their own codes. Order writes go through
    OrderService.save (version compare-and-set).
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        notifier: NotificationService | None = None,
        lock_service: LockService | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        retry_attempts: int = PAYMENT_RETRY_ATTEMPTS,
        retry_base_seconds: float = PAYMENT_RETRY_BASE_SECONDS,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier or NotificationService()
        self.locks = lock_service or LockService()
        self.orders = OrderService(db, notifier=self.notifier, clock=clock)
        self.repo = self.orders.repo
        self.clock = clock
        self.sleep = sleep
        self.retry_attempts = retry_attempts
        self.retry_base_seconds = retry_base_seconds

    def create_intent(
        self,
        order_id: int,
        principal: Principal,
        amount: Decimal,
        currency: str = DEFAULT_CURRENCY,
    ) -> Dict[str, Any]:
        order = self.orders.load(order_id)
        self._check_payer(order, principal)

        if order.status != states.PENDING or order.payment_status != PaymentStatus.PENDING:
            raise ConflictError(
                "Order is not awaiting payment",
                code=ErrorCode.ORDER_NOT_ELIGIBLE,
                details={"status": order.status, "payment_status": order.payment_status},
            )

        final_amount = pricing.to_decimal(order.final_amount)
        if abs(pricing.to_decimal(amount) - final_amount) > AMOUNT_TOLERANCE:
            raise ValidationFailed(
                "Payment amount does not match order total",
                code=ErrorCode.AMOUNT_MISMATCH,
                details={"amount": str(amount), "final_amount": str(final_amount)},
            )

        intent = self.gateway.create_intent(
            final_amount,
            currency.lower(),
            metadata={"order_id": order.id, "customer_id": order.customer_id},
            idempotency_key=f"order-{order.id}-intent",
        )
        self.orders.save(order, {"payment_intent_id": intent.intent_id})
        logger.info(f"Payment intent {intent.intent_id} created for order {order.id}")

        return {
            "payment_intent_id": intent.intent_id,
            "client_secret": intent.client_secret,
            "status": intent.status,
            "amount": intent.amount,
            "currency": intent.currency,
            "order": order_to_view(order),
        }

    def confirm(
        self,
        payment_intent_id: str,
        principal: Principal,
        payment_method: str | None = None,
    ) -> Dict[str, Any]:
        orders = self._orders_for_intent(payment_intent_id)
        for order in orders:
            self._check_payer(order, principal)

        intent = self.gateway.confirm_intent(payment_intent_id, payment_method)
        logger.info(f"Payment intent {payment_intent_id} confirmed with status {intent.status}")

        if intent.status == port.SUCCEEDED:
            for order in orders:
                self._mark_paid(order)
        elif intent.status in INCOMPLETE_STATUSES:
            raise ConflictError(
                "Payment requires further action",
                code=ErrorCode.PAYMENT_INCOMPLETE,
                details={"status": intent.status},
            )
        elif intent.status in FAILED_STATUSES:
            for order in orders:
                self._mark_failed(order, intent.status)
            raise ConflictError(
                "Payment failed",
                code=ErrorCode.PAYMENT_FAILED,
                details={"status": intent.status},
            )

        return {"status": intent.status, "orders": [order_to_view(o) for o in orders]}

    def refund(
        self,
        order_id: int,
        principal: Principal,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> Dict[str, Any]:
        order = self.orders.load(order_id)
        self._check_payer(order, principal)

        if order.payment_status != PaymentStatus.PAID:
            raise ConflictError(
                "Only paid orders can be refunded",
                code=ErrorCode.INVALID_PAYMENT_STATUS,
                details={"payment_status": order.payment_status},
            )
        if not order.payment_intent_id:
            raise ValidationFailed("Order has no payment intent", code=ErrorCode.MISSING_PAYMENT_INTENT)

        final_amount = pricing.to_decimal(order.final_amount)
        if amount is not None and (amount <= 0 or pricing.to_decimal(amount) > final_amount):
            raise ValidationFailed(
                "Refund amount must be positive and not exceed the order total",
                code=ErrorCode.INVALID_REFUND_AMOUNT,
                details={"amount": str(amount), "final_amount": str(final_amount)},
            )

        refund = self.gateway.create_refund(order.payment_intent_id, amount, reason)
        logger.info(f"Refund {refund.refund_id} of {refund.amount} issued for order {order.id}")

        changes: Dict[str, Any] = {
            "payment_status": PaymentStatus.REFUNDED,
            "refund_amount": pricing.round2(refund.amount),
            "refund_reason": reason,
        }
        # a delivered order stays delivered, only its payment is reversed
        release = order.status not in states.TERMINAL
        if release:
            changes.update(
                status=states.CANCELLED,
                cancelled_at=self.clock(),
                cancellation_reason=reason or "refunded",
            )

        try:
            self.orders.save(order, changes, release_inventory=release)
        except ConflictError:
            logger.error(f"Refund {refund.refund_id} issued but order {order.id} changed concurrently")
            raise

        return {
            "refund_id": refund.refund_id,
            "amount": refund.amount,
            "status": refund.status,
            "order": order_to_view(order),
        }

    def retry(self, order_id: int, principal: Principal) -> Dict[str, Any]:
        order = self.orders.load(order_id)
        self._check_payer(order, principal)

        if order.payment_status == PaymentStatus.PAID:
            raise ConflictError("Payment already succeeded", code=ErrorCode.PAYMENT_ALREADY_SUCCESSFUL)
        if order.payment_status == PaymentStatus.REFUNDED or order.status == states.CANCELLED:
            raise ConflictError(
                "Payment can no longer be retried for this order",
                code=ErrorCode.INVALID_PAYMENT_STATUS,
                details={"status": order.status, "payment_status": order.payment_status},
            )
        if not order.payment_intent_id:
            raise ValidationFailed("Order has no payment intent", code=ErrorCode.MISSING_PAYMENT_INTENT)

        intent_id = order.payment_intent_id

        def poll() -> str:
            intent = self.gateway.retrieve_intent(intent_id)
            if intent.status == port.REQUIRES_CONFIRMATION:
                intent = self.gateway.confirm_intent(intent_id)
            logger.info(f"Payment intent {intent_id} polled: {intent.status}")
            return intent.status

        retrying = poll_retrying(
            rechecks=self.retry_attempts,
            base_seconds=self.retry_base_seconds,
            is_pending=lambda status: status not in (port.SUCCEEDED, *FAILED_STATUSES),
            transient=(GatewayFailure,),
            sleep=self.sleep,
        )

        try:
            status = retrying(poll)
        except RetryError as e:
            last_status = e.last_attempt.result()
            logger.warning(f"Payment retry for order {order.id} exhausted, last status {last_status}")
            raise ConflictError(
                "Payment did not complete after retrying",
                code=ErrorCode.PAYMENT_RETRY_EXHAUSTED,
                details={"status": last_status, "attempts": self.retry_attempts + 1},
            ) from e

        if status in FAILED_STATUSES:
            self._mark_failed(order, status)
            raise ConflictError("Payment failed", code=ErrorCode.PAYMENT_FAILED, details={"status": status})

        self._mark_paid(order)
        return {"status": status, "order": order_to_view(order)}

    def reconcile_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        event = self.gateway.construct_event(payload, signature)
        return self.handle_event(event)

    def handle_event(self, event: port.WebhookEvent) -> Dict[str, Any]:
        """
        An event id already applied is acknowledged without touching orders.
        Independently of that, every branch checks the order's current state
        before writing, so a paid or refunded order never moves backwards.
        """
        if event.type not in (EVENT_SUCCEEDED, EVENT_FAILED, EVENT_CANCELED) or not event.intent_id:
            logger.info(f"Webhook {event.event_id} ({event.type}) ignored")
            return {"received": True, "handled": False}

        if self.locks.event_processed(event.event_id):
            logger.info(f"Webhook {event.event_id} ({event.type}) already processed")
            return {"received": True, "handled": True, "orders_changed": 0}

        orders = self.repo.list_by_payment_intent(event.intent_id)
        if not orders:
            logger.warning(f"Webhook {event.event_id}: no order for intent {event.intent_id}")
            return {"received": True, "handled": False}

        changed = 0
        for order in orders:
            if event.type == EVENT_SUCCEEDED:
                changed += self._mark_paid(order)
            elif event.type == EVENT_FAILED:
                changed += self._mark_failed(order, port.PAYMENT_FAILED)
            else:
                changed += self._cancel_for_payment(order)

        self.locks.mark_event_processed(event.event_id)
        logger.info(f"Webhook {event.event_id} ({event.type}) applied to {changed} order(s)")
        return {"received": True, "handled": True, "orders_changed": changed}

    # helpers
    def _orders_for_intent(self, payment_intent_id: str) -> list[OrderModel]:
        orders = self.repo.list_by_payment_intent(payment_intent_id)
        if not orders:
            raise NotFoundError(
                "No order for this payment intent",
                code=ErrorCode.ORDER_NOT_FOUND,
                details={"payment_intent_id": payment_intent_id},
            )
        return orders

    def _mark_paid(self, order: OrderModel) -> bool:
        if order.payment_status == PaymentStatus.PAID:
            return False
        if order.payment_status == PaymentStatus.REFUNDED or order.status == states.CANCELLED:
            logger.warning(
                f"Payment succeeded for order {order.id} in {order.status}/{order.payment_status}, left as is"
            )
            return False
        changes: Dict[str, Any] = {"payment_status": PaymentStatus.PAID}
        if order.status == states.PENDING:
            changes.update(status=states.CONFIRMED, confirmed_at=self.clock())
        self.orders.save(order, changes)
        logger.info(f"Order {order.id} paid")
        return True

    def _mark_failed(self, order: OrderModel, reason: str) -> bool:
        # a late failure never overrides a settled payment
        if order.payment_status in (PaymentStatus.FAILED, PaymentStatus.PAID, PaymentStatus.REFUNDED):
            return False
        self.orders.save(order, {"payment_status": PaymentStatus.FAILED})
        logger.warning(f"Payment for order {order.id} failed ({reason})")
        self.notifier.payment_failed(order, reason)
        return True

    def _cancel_for_payment(self, order: OrderModel) -> bool:
        if order.status == states.CANCELLED or order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            return False
        try:
            self.orders.cancel_order(order, "payment_canceled", PaymentStatus.FAILED)
        except ConflictError as e:
            if e.code != ErrorCode.ORDER_NOT_CANCELLABLE:
                raise
            logger.warning(f"Payment canceled for order {order.id} in status {order.status}, left as is")
            return False
        self.notifier.payment_failed(order, port.CANCELED)
        return True

    def _check_payer(self, order: OrderModel, principal: Principal) -> None:
        if principal.is_admin or principal.is_system:
            return
        if principal.role == CUSTOMER and order.customer_id == principal.user_id:
            return
        raise NotAuthorized("Not allowed to manage payment for this order")
