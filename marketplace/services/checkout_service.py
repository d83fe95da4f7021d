# marketplace/services/checkout_service.py
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_item import OrderItemModel
from marketplace.domain import pricing
from marketplace.domain.errors import ConflictError, ErrorCode, NotFoundError, ValidationFailed
from marketplace.domain.order_states import PENDING, PaymentStatus
from marketplace.repos.order_repo import OrderRepo
from marketplace.services.cart_service import ADDRESS_FIELDS, OK, CartService, group_by_chef
from marketplace.services.inventory_service import InventoryService
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import order_to_view
from marketplace.utils.clock import as_utc, utcnow
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import DEFAULT_PREP_MINUTES, DELIVERY_BUFFER_MINUTES

logger = get_logger(__name__)


class CheckoutService:
    """
    Cart -> one pending order per chef.

    1. per-customer lock in Redis, Idempotency-Key replay
    2. cart checks (empty, expired, address, availability, chefs)
    3. reserve + persist orders group by group, clear the cart
    4. one commit; any failure before it rolls everything back
    5. events and idempotency record only after the commit
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        notifier: NotificationService | None = None,
        clock: Callable[[], datetime] = utcnow,
        inventory: InventoryService | None = None,
    ):
        self.db = db
        self.carts = CartService(db, clock=clock)
        self.orders = OrderRepo(db)
        self.inventory = inventory or InventoryService(db)
        self.lock_service = lock_service
        self.notifier = notifier or NotificationService()
        self.clock = clock

    def checkout(
        self,
        customer_id: int,
        payment_intent_id: str | None = None,
        customer_notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> Dict[str, Any]:
        token = self.lock_service.acquire_checkout_lock(customer_id)
        if token is None:
            raise ConflictError(
                "Another checkout for this customer is in progress",
                code=ErrorCode.CHECKOUT_IN_PROGRESS,
            )

        try:
            if idempotency_key:
                stored = self.lock_service.get_result(customer_id, idempotency_key)
                if stored is not None:
                    logger.info(f"Checkout replay for customer {customer_id}, key {idempotency_key}")
                    orders = self.orders.get_by_checkout(stored["checkout_id"])
                    return self._result(stored["checkout_id"], orders, replayed=True)

            checkout_id, orders = self._place_orders(customer_id, payment_intent_id, customer_notes)

            for order in orders:
                self.notifier.order_created(order)

            if idempotency_key:
                self.lock_service.store_result(customer_id, idempotency_key, {"checkout_id": checkout_id})

            return self._result(checkout_id, orders)
        finally:
            self.lock_service.release_checkout_lock(customer_id, token)

    def _place_orders(
        self,
        customer_id: int,
        payment_intent_id: str | None,
        customer_notes: str | None,
    ) -> tuple[str, list[OrderModel]]:
        cart = self.carts.load(customer_id)

        if not cart.items:
            raise ValidationFailed("Cart is empty", code=ErrorCode.EMPTY_CART)
        if self.carts.is_expired(cart):
            raise ValidationFailed("Cart has expired", code=ErrorCode.CART_EXPIRED)

        if cart.delivery_type == "delivery":
            missing = [name for name in ADDRESS_FIELDS if not getattr(cart, name)]
            if cart.coordinates is None:
                missing.append("coordinates")
            if missing:
                raise ValidationFailed(
                    "Delivery address is incomplete",
                    code=ErrorCode.INCOMPLETE_DELIVERY_ADDRESS,
                    details={"missing": missing},
                )

        unavailable = [v for v in self.carts.validate_availability(cart) if v["status"] != OK]
        if unavailable:
            raise ConflictError(
                "Some items in cart are no longer available",
                code=ErrorCode.ITEMS_UNAVAILABLE,
                details=unavailable,
            )

        groups = group_by_chef(cart.items)
        chefs = self.carts.catalog.get_chefs(g.chef_id for g in groups)
        for group in groups:
            if group.chef_id not in chefs:
                raise NotFoundError(
                    "Chef not found",
                    code=ErrorCode.CHEF_NOT_FOUND,
                    details={"chef_id": group.chef_id},
                )

        quotes = self.carts.quote(cart, groups, chefs)
        meals = self.carts.catalog.get_meals(i.meal_id for i in cart.items)

        checkout_id = str(uuid.uuid4())
        now = self.clock()
        payment_status = PaymentStatus.PAID if payment_intent_id else PaymentStatus.PENDING
        notes = customer_notes if customer_notes is not None else cart.notes
        created: list[OrderModel] = []

        try:
            for group, quote in zip(groups, quotes):
                for item in group.items:
                    self.inventory.reserve(item.meal_id, item.quantity)

                prep_minutes = max(
                    (meals[i.meal_id].preparation_time or DEFAULT_PREP_MINUTES) for i in group.items
                )
                order = OrderModel(
                    checkout_id=checkout_id,
                    customer_id=customer_id,
                    chef_id=group.chef_id,
                    items=[
                        OrderItemModel(
                            meal_id=i.meal_id,
                            chef_id=i.chef_id,
                            quantity=i.quantity,
                            price=i.unit_price,
                            special_instructions=i.special_instructions,
                        )
                        for i in group.items
                    ],
                    total_amount=quote.subtotal,
                    delivery_fee=quote.delivery_fee,
                    tax=quote.tax,
                    discount=quote.discount,
                    final_amount=quote.final_amount,
                    delivery_type=cart.delivery_type,
                    street=cart.street,
                    city=cart.city,
                    state=cart.state,
                    zip_code=cart.zip_code,
                    longitude=cart.longitude,
                    latitude=cart.latitude,
                    status=PENDING,
                    payment_status=payment_status,
                    payment_intent_id=payment_intent_id,
                    estimated_delivery_time=now + timedelta(minutes=prep_minutes + DELIVERY_BUFFER_MINUTES),
                    customer_notes=notes,
                    refund_amount=pricing.ZERO,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                self.orders.add_order(order)
                created.append(order)

            self.carts.save(cart, self.carts.clear_in_place(cart), commit=False)
            self.orders.commit()
        except Exception as e:
            logger.warning(f"Checkout for customer {customer_id} rolled back: {e}")
            self.db.rollback()
            raise

        logger.info(f"Checkout {checkout_id}: {len(created)} order(s) for customer {customer_id}")
        return checkout_id, created

    def _result(self, checkout_id: str, orders: list[OrderModel], replayed: bool = False) -> Dict[str, Any]:
        etas = [as_utc(o.estimated_delivery_time) for o in orders if o.estimated_delivery_time is not None]
        return {
            "checkout_id": checkout_id,
            "replayed": replayed,
            "orders": [order_to_view(o) for o in orders],
            "summary": {
                "total_orders": len(orders),
                "total_amount": sum((pricing.to_decimal(o.final_amount) for o in orders), pricing.ZERO),
                "estimated_delivery_time": max(etas) if etas else None,
            },
        }
