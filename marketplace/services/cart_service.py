# marketplace/services/cart_service.py
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel
from marketplace.data.models.chef import ChefModel
from marketplace.domain import pricing
from marketplace.domain.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationFailed,
)
from marketplace.repos.cart_repo import CartRepo
from marketplace.repos.catalog_repo import CatalogRepo
from marketplace.utils.clock import as_utc, utcnow
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import CART_TTL_SECONDS, PROMO_CODES

logger = get_logger(__name__)

MAX_LINE_QUANTITY = 100
PRICE_TOLERANCE = Decimal("0.01")
DELIVERY_TYPES = ("delivery", "pickup")
ADDRESS_FIELDS = ("street", "city", "state", "zip_code")

# availability verdicts
OK = "ok"
MEAL_DELETED = "mealDeleted"
INACTIVE = "inactive"
INSUFFICIENT_QUANTITY = "insufficientQuantity"
OUTSIDE_WINDOW = "outsideWindow"


@dataclass
class ChefGroup:
    chef_id: int
    items: list = field(default_factory=list)
    subtotal: Decimal = pricing.ZERO


def group_by_chef(items) -> list[ChefGroup]:
    """Lines grouped per chef, groups in order of the chef's first line."""
    groups: dict[int, ChefGroup] = {}
    for item in items:
        group = groups.setdefault(item.chef_id, ChefGroup(chef_id=item.chef_id))
        group.items.append(item)
    for group in groups.values():
        group.subtotal = pricing.subtotal(group.items)
    return list(groups.values())


def in_availability_window(meal, now: datetime) -> bool:
    # windows are stored and compared in UTC, at minute resolution
    if meal.available_date != now.date():
        return False
    current = now.time().replace(second=0, microsecond=0)
    return meal.start_time <= current <= meal.end_time


def availability_verdict(meal, quantity: int, now: datetime) -> str:
    if meal is None or meal.is_deleted:
        return MEAL_DELETED
    if not meal.is_active:
        return INACTIVE
    if meal.remaining_quantity < quantity:
        return INSUFFICIENT_QUANTITY
    if not in_availability_window(meal, now):
        return OUTSIDE_WINDOW
    return OK


class CartService:
    """
    One cart per customer, created lazily.
    Commands change the cart under an optimistic version check,
    queries never write (except the lazy create).
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        promo_codes: dict[str, Decimal] | None = None,
        ttl_seconds: int = CART_TTL_SECONDS,
    ):
        self.db = db
        self.repo = CartRepo(db)
        self.catalog = CatalogRepo(db)
        self.clock = clock
        self.promo_codes = PROMO_CODES if promo_codes is None else promo_codes
        self.ttl = timedelta(seconds=ttl_seconds)

    # query
    def get_cart(self, customer_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        return self.to_view(cart)

    def summary(self, customer_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        items = self.live_items(cart)
        groups = group_by_chef(items)
        chefs = self.catalog.get_chefs(g.chef_id for g in groups)
        quotes = self.quote(cart, groups, chefs)

        cart_subtotal = pricing.subtotal(items)
        delivery_fee = sum((q.delivery_fee for q in quotes), pricing.ZERO)
        tax = sum((q.tax for q in quotes), pricing.ZERO)
        discount = sum((q.discount for q in quotes), pricing.ZERO)

        return {
            "subtotal": cart_subtotal,
            "discount": discount,
            "delivery_fee": delivery_fee,
            "delivery_fees": [
                {
                    "chef_id": q.chef_id,
                    "business_name": chefs[q.chef_id].business_name if q.chef_id in chefs else None,
                    "fee": q.delivery_fee,
                    "withheld": q.fee_withheld,
                }
                for q in quotes
            ],
            "tax": tax,
            "total": sum((q.final_amount for q in quotes), pricing.ZERO),
            "item_count": sum(i.quantity for i in items),
            "chef_count": len(groups),
            "groups": [
                {
                    "chef_id": g.chef_id,
                    "items": [self._item_view(i) for i in g.items],
                    "subtotal": g.subtotal,
                }
                for g in groups
            ],
        }

    def validate_availability(self, cart: CartModel) -> list[Dict[str, Any]]:
        """Verdict per line. Read-only, callers decide what blocks."""
        now = self.clock()
        items = self.live_items(cart)
        meals = self.catalog.get_meals(i.meal_id for i in items)

        verdicts = []
        for item in items:
            meal = meals.get(item.meal_id)
            verdicts.append(
                {
                    "meal_id": item.meal_id,
                    "chef_id": item.chef_id,
                    "name": meal.name if meal is not None else None,
                    "quantity": item.quantity,
                    "remaining_quantity": meal.remaining_quantity if meal is not None else 0,
                    "status": availability_verdict(meal, item.quantity, now),
                }
            )
        return verdicts

    def validate(self, customer_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        verdicts = self.validate_availability(cart)
        unavailable = [v for v in verdicts if v["status"] != OK]
        return {"valid": not unavailable, "items": verdicts, "unavailable_items": unavailable}

    # commands
    def add_item(
        self,
        customer_id: int,
        meal_id: int,
        chef_id: int,
        quantity: int,
        price: Decimal,
        special_instructions: str | None = None,
    ) -> Dict[str, Any]:
        self._check_quantity(quantity)

        meal = self.catalog.get_meal(meal_id)
        if meal is None or meal.is_deleted:
            raise NotFoundError("Meal not found", code=ErrorCode.MEAL_NOT_FOUND, details={"meal_id": meal_id})
        if not meal.is_active:
            raise ConflictError(
                "Meal is not currently available",
                code=ErrorCode.MEAL_NOT_AVAILABLE,
                details={"meal_id": meal_id},
            )
        if meal.chef_id != chef_id:
            raise ValidationFailed(
                "Chef does not own this meal",
                code=ErrorCode.CHEF_MISMATCH,
                details={"meal_id": meal_id, "chef_id": chef_id},
            )
        if abs(pricing.to_decimal(price) - pricing.to_decimal(meal.price)) > PRICE_TOLERANCE:
            raise ValidationFailed(
                "Meal price has changed",
                code=ErrorCode.MEAL_PRICE_MISMATCH,
                details={"meal_id": meal_id, "price": str(price), "current_price": str(meal.price)},
            )

        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)
        now = self.clock()

        existing = self.repo.get_item(cart, meal_id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if new_quantity > MAX_LINE_QUANTITY:
            raise ValidationFailed(
                f"Quantity per meal cannot exceed {MAX_LINE_QUANTITY}",
                details={"meal_id": meal_id, "quantity": new_quantity},
            )
        self._check_stock(meal, new_quantity)

        if existing:
            logger.info(
                f"Meal {meal_id} already in cart {cart.id}, quantity {existing.quantity} -> {new_quantity}"
            )
            existing.quantity = new_quantity
            existing.unit_price = meal.price
            existing.special_instructions = special_instructions
            existing.added_at = now
        else:
            logger.info(f"Adding meal {meal_id} x{quantity} to cart {cart.id}")
            cart.items.append(
                CartItemModel(
                    meal_id=meal_id,
                    chef_id=chef_id,
                    quantity=quantity,
                    unit_price=meal.price,
                    special_instructions=special_instructions,
                    added_at=now,
                )
            )

        self.save(cart, self._after_item_change(cart, changes))
        return self.to_view(cart)

    def update_quantity(self, customer_id: int, meal_id: int, quantity: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)

        item = self.repo.get_item(cart, meal_id)
        if item is None:
            raise NotFoundError("Item not found in cart", code=ErrorCode.ITEM_NOT_FOUND, details={"meal_id": meal_id})

        if quantity <= 0:
            logger.info(f"Quantity 0 for meal {meal_id}, removing it from cart {cart.id}")
            cart.items.remove(item)
        else:
            self._check_quantity(quantity)
            meal = self.catalog.get_meal(meal_id)
            if meal is None or meal.is_deleted:
                raise NotFoundError("Meal not found", code=ErrorCode.MEAL_NOT_FOUND, details={"meal_id": meal_id})
            self._check_stock(meal, quantity)
            item.quantity = quantity

        self.save(cart, self._after_item_change(cart, changes))
        return self.to_view(cart)

    def remove_item(self, customer_id: int, meal_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)

        item = self.repo.get_item(cart, meal_id)
        if item is None:
            raise NotFoundError("Item not found in cart", code=ErrorCode.ITEM_NOT_FOUND, details={"meal_id": meal_id})

        logger.info(f"Removing meal {meal_id} from cart {cart.id}")
        cart.items.remove(item)

        self.save(cart, self._after_item_change(cart, changes))
        return self.to_view(cart)

    def clear(self, customer_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        self.save(cart, self.clear_in_place(cart))
        logger.info(f"Cart {cart.id} cleared")
        return self.to_view(cart)

    def apply_promo(self, customer_id: int, code: str) -> Dict[str, Any]:
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)
        if not cart.items:
            raise ValidationFailed("Cart is empty", code=ErrorCode.EMPTY_CART)

        normalized = (code or "").strip().upper()
        value = self.promo_codes.get(normalized)
        if value is None:
            raise ValidationFailed("Invalid promo code", code=ErrorCode.INVALID_PROMO_CODE, details={"code": code})

        discount = min(pricing.round2(value), pricing.subtotal(cart.items))
        changes.update(promo_code=normalized, discount=discount)
        self.save(cart, changes)

        logger.info(f"Promo {normalized} applied to cart {cart.id}, discount {discount}")
        return self.to_view(cart)

    def remove_promo(self, customer_id: int) -> Dict[str, Any]:
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)
        changes.update(promo_code=None, discount=pricing.ZERO)
        self.save(cart, changes)
        return self.to_view(cart)

    def update_delivery_address(self, customer_id: int, address: Dict[str, Any]) -> Dict[str, Any]:
        """Partial merge, only the fields present in `address` change."""
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)

        for name in ADDRESS_FIELDS:
            if name in address:
                changes[name] = address[name]
        if "coordinates" in address:
            coordinates = address["coordinates"]
            if coordinates is None:
                changes.update(longitude=None, latitude=None)
            else:
                longitude, latitude = coordinates
                changes.update(longitude=float(longitude), latitude=float(latitude))

        self.save(cart, changes)
        return self.to_view(cart)

    def update_delivery_type(self, customer_id: int, delivery_type: str) -> Dict[str, Any]:
        if delivery_type not in DELIVERY_TYPES:
            raise ValidationFailed(
                f"Delivery type must be one of {', '.join(DELIVERY_TYPES)}",
                details={"delivery_type": delivery_type},
            )
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)
        changes["delivery_type"] = delivery_type
        self.save(cart, changes)
        return self.to_view(cart)

    def update_notes(self, customer_id: int, notes: str | None) -> Dict[str, Any]:
        cart = self.load(customer_id)
        changes = self._purge_if_expired(cart)
        changes["notes"] = notes
        self.save(cart, changes)
        return self.to_view(cart)

    # shared with checkout
    def load(self, customer_id: int) -> CartModel:
        cart = self.repo.get_by_customer(customer_id)
        if cart is not None:
            return cart

        try:
            cart = self.repo.create_cart(
                CartModel(
                    customer_id=customer_id,
                    delivery_type="delivery",
                    discount=pricing.ZERO,
                    version=1,
                    expires_at=self.clock() + self.ttl,
                )
            )
            self.repo.commit()
        except IntegrityError:
            # another request created it first
            self.repo.rollback()
            return self.repo.get_by_customer(customer_id)

        logger.info(f"Created cart {cart.id} for customer {customer_id}")
        return cart

    def is_expired(self, cart: CartModel) -> bool:
        return as_utc(cart.expires_at) <= self.clock()

    def live_items(self, cart: CartModel) -> list[CartItemModel]:
        return [] if self.is_expired(cart) else list(cart.items)

    def clear_in_place(self, cart: CartModel) -> Dict[str, Any]:
        """Empty the lines; the caller persists the returned changes with save()."""
        cart.items.clear()
        return {"promo_code": None, "discount": pricing.ZERO, "notes": None}

    def save(self, cart: CartModel, changes: Dict[str, Any], commit: bool = True) -> None:
        """
        Version-checked write of the cart row (items are flushed with it).
        Raises ConcurrentUpdate when the cart moved on since it was loaded.
        """
        old_version = cart.version
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=old_version,
            new_data={**changes, "version": old_version + 1},
        )

        if rowcount == 0:
            self.repo.rollback()
            raise ConflictError(
                "Cart was modified by another request",
                code=ErrorCode.CONCURRENT_UPDATE,
                details={"cart_id": cart.id},
            )

        if commit:
            self.repo.commit()
            logger.info(f"Cart {cart.id} saved, version {old_version + 1}")

    def quote(self, cart: CartModel, groups: list[ChefGroup], chefs: dict[int, ChefModel]):
        return pricing.quote_groups(
            groups,
            {chef_id: chef.coordinates for chef_id, chef in chefs.items()},
            cart.coordinates,
            cart.delivery_type,
            pricing.to_decimal(cart.discount or 0),
        )

    def to_view(self, cart: CartModel) -> Dict[str, Any]:
        expired = self.is_expired(cart)
        items = [] if expired else list(cart.items)
        return {
            "cart_id": cart.id,
            "customer_id": cart.customer_id,
            "items": [self._item_view(i) for i in items],
            "delivery_type": cart.delivery_type,
            "delivery_address": {
                "street": cart.street,
                "city": cart.city,
                "state": cart.state,
                "zip_code": cart.zip_code,
                "coordinates": list(cart.coordinates) if cart.coordinates else None,
            },
            "promo_code": None if expired else cart.promo_code,
            "discount": pricing.ZERO if expired else pricing.round2(cart.discount or 0),
            "notes": cart.notes,
            "subtotal": pricing.subtotal(items),
            "item_count": sum(i.quantity for i in items),
            "expires_at": as_utc(cart.expires_at),
            "version": cart.version,
        }

    # helpers

    def _item_view(self, item: CartItemModel) -> Dict[str, Any]:
        return {
            "meal_id": item.meal_id,
            "chef_id": item.chef_id,
            "quantity": item.quantity,
            "unit_price": pricing.round2(item.unit_price),
            "line_total": pricing.round2(pricing.to_decimal(item.unit_price) * item.quantity),
            "special_instructions": item.special_instructions,
            "added_at": as_utc(item.added_at),
        }

    def _purge_if_expired(self, cart: CartModel) -> Dict[str, Any]:
        if not self.is_expired(cart):
            return {}
        logger.info(f"Cart {cart.id} expired, dropping {len(cart.items)} stale line(s)")
        changes = self.clear_in_place(cart)
        # stale rows must be gone before a line for the same meal is re-added
        self.repo.flush()
        changes["expires_at"] = self.clock() + self.ttl
        return changes

    def _after_item_change(self, cart: CartModel, changes: Dict[str, Any]) -> Dict[str, Any]:
        # discount never exceeds subtotal, expiry never moves backwards
        current_discount = pricing.to_decimal(changes.get("discount", cart.discount) or 0)
        changes["discount"] = min(current_discount, pricing.subtotal(cart.items))
        if not cart.items:
            changes["promo_code"] = None

        fresh = self.clock() + self.ttl
        existing = as_utc(changes.get("expires_at", cart.expires_at))
        changes["expires_at"] = max(existing, fresh) if existing else fresh
        return changes

    def _check_quantity(self, quantity: int) -> None:
        if quantity < 1 or quantity > MAX_LINE_QUANTITY:
            raise ValidationFailed(
                f"Quantity must be between 1 and {MAX_LINE_QUANTITY}",
                details={"quantity": quantity},
            )

    def _check_stock(self, meal, quantity: int) -> None:
        if quantity > meal.remaining_quantity:
            raise ConflictError(
                "Requested quantity is not available",
                code=ErrorCode.INSUFFICIENT_AVAILABILITY,
                details={
                    "meal_id": meal.id,
                    "requested": quantity,
                    "remaining_quantity": meal.remaining_quantity,
                },
            )
