# marketplace/services/order_service.py
import math
from datetime import datetime
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from marketplace.data.models.order import OrderModel
from marketplace.domain import order_states as states
from marketplace.domain.errors import (
    ConflictError,
    ErrorCode,
    NotAuthorized,
    NotFoundError,
    ValidationFailed,
)
from marketplace.domain.order_states import PaymentStatus
from marketplace.domain.principal import CHEF, CUSTOMER, Principal
from marketplace.repos.order_repo import OrderRepo
from marketplace.services.inventory_service import InventoryService
from marketplace.services.notification_service import NotificationService
from marketplace.utils.clock import as_utc, utcnow
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def order_to_view(order: OrderModel) -> Dict[str, Any]:
    return {
        "id": order.id,
        "checkout_id": order.checkout_id,
        "customer_id": order.customer_id,
        "chef_id": order.chef_id,
        "items": [
            {
                "meal_id": i.meal_id,
                "chef_id": i.chef_id,
                "quantity": i.quantity,
                "price": i.price,
                "special_instructions": i.special_instructions,
            }
            for i in order.items
        ],
        "total_amount": order.total_amount,
        "delivery_fee": order.delivery_fee,
        "tax": order.tax,
        "discount": order.discount,
        "final_amount": order.final_amount,
        "delivery_type": order.delivery_type,
        "delivery_address": {
            "street": order.street,
            "city": order.city,
            "state": order.state,
            "zip_code": order.zip_code,
            "coordinates": (
                [order.longitude, order.latitude]
                if order.longitude is not None and order.latitude is not None
                else None
            ),
        },
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_intent_id": order.payment_intent_id,
        "estimated_delivery_time": as_utc(order.estimated_delivery_time),
        "actual_delivery_time": as_utc(order.actual_delivery_time),
        "cancellation_reason": order.cancellation_reason,
        "customer_notes": order.customer_notes,
        "chef_notes": order.chef_notes,
        "refund_amount": order.refund_amount,
        "refund_reason": order.refund_reason,
        "created_at": as_utc(order.created_at),
        "updated_at": as_utc(order.updated_at),
    }


class OrderService:
    """
    Order lifecycle after checkout.

    Every write is a compare-and-set on orders.version; inventory released by a
    cancellation goes out in the same transaction, so a lost race releases nothing.
    """

    def __init__(
        self,
        db: Session,
        notifier: NotificationService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.inventory = InventoryService(db)
        self.notifier = notifier or NotificationService()
        self.clock = clock

    # query
    def get_order(self, order_id: int, principal: Principal) -> Dict[str, Any]:
        order = self.load(order_id)
        self._check_can_view(order, principal)
        return order_to_view(order)

    def list_customer_orders(
        self,
        customer_id: int,
        status: str | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> Dict[str, Any]:
        return self._page(customer_id=customer_id, status=status, limit=limit, skip=skip)

    def list_chef_orders(
        self,
        chef_id: int,
        status: str | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> Dict[str, Any]:
        return self._page(chef_id=chef_id, status=status, limit=limit, skip=skip)

    def tracking(self, order_id: int, principal: Principal) -> Dict[str, Any]:
        order = self.load(order_id)
        self._check_can_view(order, principal)

        eta = as_utc(order.estimated_delivery_time)
        minutes_remaining = None
        if eta is not None and order.status not in states.TERMINAL:
            minutes_remaining = max(0, math.ceil((eta - self.clock()).total_seconds() / 60))

        timeline = [{"status": states.PENDING, "at": as_utc(order.created_at)}]
        for status, column in states.TIMESTAMP_FIELDS.items():
            stamped = getattr(order, column)
            if stamped is not None:
                timeline.append({"status": status, "at": as_utc(stamped)})

        return {
            "order_id": order.id,
            "status": order.status,
            "payment_status": order.payment_status,
            "estimated_delivery_time": eta,
            "actual_delivery_time": as_utc(order.actual_delivery_time),
            "minutes_remaining": minutes_remaining,
            "timeline": timeline,
        }

    # commands
    def update_status(
        self,
        order_id: int,
        target: str,
        chef_id: int | None,
        notes: str | None = None,
        estimated_delivery_time: datetime | None = None,
    ) -> Dict[str, Any]:
        if target not in states.STATUSES:
            raise ValidationFailed(f"Unknown order status: {target}", details={"status": target})

        order = self.load(order_id)
        if chef_id is None or order.chef_id != chef_id:
            raise NotAuthorized("Only the order's chef can update its status")

        states.assert_transition(order.status, target)
        if target == states.CANCELLED:
            raise NotAuthorized("Chefs cannot cancel orders")

        now = self.clock()
        changes: Dict[str, Any] = {
            "status": target,
            states.TIMESTAMP_FIELDS.get(target, "updated_at"): now,
        }
        if target == states.DELIVERED:
            changes["actual_delivery_time"] = now
        if notes is not None:
            changes["chef_notes"] = notes
        if estimated_delivery_time is not None:
            changes["estimated_delivery_time"] = estimated_delivery_time

        logger.info(f"Order {order.id}: {order.status} -> {target} by chef {chef_id}")
        self.save(order, changes)
        return order_to_view(order)

    def cancel(self, order_id: int, principal: Principal, reason: str | None = None) -> Dict[str, Any]:
        order = self.load(order_id)

        if principal.role == CHEF:
            raise NotAuthorized("Chefs cannot cancel orders")
        # only the ordering customer, or payment reconciliation
        owner = principal.role == CUSTOMER and order.customer_id == principal.user_id
        if not (owner or principal.is_system):
            raise NotAuthorized("Not allowed to cancel this order")

        self.cancel_order(order, reason or "cancelled_by_customer", PaymentStatus.REFUNDED)
        return order_to_view(order)

    # shared with payments
    def load(self, order_id: int) -> OrderModel:
        order = self.repo.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found", code=ErrorCode.ORDER_NOT_FOUND, details={"order_id": order_id})
        return order

    def cancel_order(self, order: OrderModel, reason: str, payment_status: str, commit: bool = True) -> OrderModel:
        if order.status not in states.CANCELLABLE:
            raise ConflictError(
                f"Order cannot be cancelled in status {order.status}",
                code=ErrorCode.ORDER_NOT_CANCELLABLE,
                details={"order_id": order.id, "status": order.status},
            )

        logger.info(f"Cancelling order {order.id} ({reason})")
        self.save(
            order,
            {
                "status": states.CANCELLED,
                "payment_status": payment_status,
                "cancellation_reason": reason,
                "cancelled_at": self.clock(),
            },
            release_inventory=True,
            commit=commit,
        )
        return order

    def save(
        self,
        order: OrderModel,
        changes: Dict[str, Any],
        release_inventory: bool = False,
        commit: bool = True,
    ) -> OrderModel:
        """
        Compare-and-set on version. Raises ConcurrentUpdate when another
        writer got there first; nothing from this call is kept in that case.
        """
        previous_status = order.status
        old_version = order.version
        items = list(order.items)

        rowcount = self.repo.update_order_version(
            order_id=order.id,
            old_version=old_version,
            new_data={**changes, "version": old_version + 1},
        )

        if rowcount == 0:
            self.repo.rollback()
            logger.warning(f"Order {order.id} changed concurrently (version {old_version})")
            raise ConflictError(
                "Order was modified by another request",
                code=ErrorCode.CONCURRENT_UPDATE,
                details={"order_id": order.id},
            )

        if release_inventory:
            self.inventory.release_items(items)

        if commit:
            self.repo.commit()
            if order.status != previous_status:
                self.notifier.status_changed(order, previous_status)

        return order

    # helpers
    def _page(self, status: str | None, limit: int, skip: int, **owner) -> Dict[str, Any]:
        if status is not None and status not in states.STATUSES:
            raise ValidationFailed(f"Unknown order status: {status}", details={"status": status})
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        skip = max(0, skip)

        orders, total = self.repo.list_orders(status=status, limit=limit, skip=skip, **owner)
        return {
            "orders": [order_to_view(o) for o in orders],
            "total": total,
            "limit": limit,
            "skip": skip,
        }

    def _check_can_view(self, order: OrderModel, principal: Principal) -> None:
        if principal.is_admin or principal.is_system:
            return
        if principal.role == CUSTOMER and order.customer_id == principal.user_id:
            return
        if principal.role == CHEF and principal.chef_id is not None and order.chef_id == principal.chef_id:
            return
        raise NotAuthorized("Not allowed to access this order")
