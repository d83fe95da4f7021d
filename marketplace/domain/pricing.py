# marketplace/domain/pricing.py
"""
Money and fee math shared by the cart summary and checkout.

Pure functions over Decimal, no I/O. Coordinates are (longitude, latitude).
"""
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from marketplace.utils.settings import (
    DELIVERY_BASE_FEE,
    DELIVERY_PER_KM_RATE,
    DISCOUNT_ALLOCATION,
    TAX_RATE,
)

EARTH_RADIUS_KM = 6371.0
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

FIRST_GROUP = "first_group"
PROPORTIONAL = "proportional"


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    # ROUND_HALF_UP on Decimal rounds half away from zero
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def subtotal(items: Iterable) -> Decimal:
    """Σ price × quantity. Items expose ``price`` (or ``unit_price``) and ``quantity``."""
    total = ZERO
    for item in items:
        price = getattr(item, "unit_price", None)
        if price is None:
            price = item.price
        total += to_decimal(price) * item.quantity
    return round2(total)


def haversine_km(origin: Sequence[float], destination: Sequence[float]) -> float:
    lng1, lat1 = origin
    lng2, lat2 = destination

    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def delivery_fee(
    chef_coordinates: Sequence[float] | None,
    delivery_coordinates: Sequence[float] | None,
    delivery_type: str,
    base_fee: Decimal = DELIVERY_BASE_FEE,
    per_km_rate: Decimal = DELIVERY_PER_KM_RATE,
) -> Decimal | None:
    """None means the fee is withheld (pickup, or no coordinates to measure from)."""
    if delivery_type != "delivery" or not delivery_coordinates or not chef_coordinates:
        return None

    distance = to_decimal(haversine_km(chef_coordinates, delivery_coordinates))
    return round2(to_decimal(base_fee) + to_decimal(per_km_rate) * distance)


def tax(amount: Decimal, rate: Decimal = TAX_RATE) -> Decimal:
    return round2(to_decimal(amount) * to_decimal(rate))


def final_amount(group_subtotal: Decimal, fee: Decimal | None, tax_amount: Decimal, discount: Decimal) -> Decimal:
    total = to_decimal(group_subtotal) + (fee or ZERO) + to_decimal(tax_amount) - to_decimal(discount)
    return max(ZERO, round2(total))


def allocate_discount(
    discount: Decimal,
    group_subtotals: Sequence[Decimal],
    policy: str = DISCOUNT_ALLOCATION,
) -> list[Decimal]:
    """Split one cart discount across the chef groups of a checkout."""
    discount = round2(discount)
    shares = [ZERO for _ in group_subtotals]
    if not group_subtotals or discount <= ZERO:
        return shares

    if policy == PROPORTIONAL:
        total = sum((to_decimal(s) for s in group_subtotals), ZERO)
        if total <= ZERO:
            return shares
        remaining = discount
        last = len(group_subtotals) - 1
        for index, group_subtotal in enumerate(group_subtotals):
            if index == last:
                share = remaining
            else:
                share = round2(discount * to_decimal(group_subtotal) / total)
            share = min(share, to_decimal(group_subtotal), remaining)
            shares[index] = share
            remaining -= share
        return shares

    if policy != FIRST_GROUP:
        raise ValueError(f"Unknown discount allocation policy: {policy}")

    shares[0] = min(discount, to_decimal(group_subtotals[0]))
    return shares


@dataclass(frozen=True)
class GroupQuote:
    chef_id: int
    subtotal: Decimal
    delivery_fee: Decimal
    fee_withheld: bool
    tax: Decimal
    discount: Decimal
    final_amount: Decimal


def quote_groups(
    groups: Sequence,
    chef_coordinates: dict[int, Sequence[float] | None],
    delivery_coordinates: Sequence[float] | None,
    delivery_type: str,
    discount: Decimal,
    tax_rate: Decimal = TAX_RATE,
    base_fee: Decimal = DELIVERY_BASE_FEE,
    per_km_rate: Decimal = DELIVERY_PER_KM_RATE,
    policy: str = DISCOUNT_ALLOCATION,
) -> list[GroupQuote]:
    """Price every chef group of a cart. `groups` expose ``chef_id`` and ``subtotal``."""
    discounts = allocate_discount(discount, [g.subtotal for g in groups], policy)

    quotes = []
    for group, group_discount in zip(groups, discounts):
        fee = delivery_fee(
            chef_coordinates.get(group.chef_id),
            delivery_coordinates,
            delivery_type,
            base_fee=base_fee,
            per_km_rate=per_km_rate,
        )
        group_tax = tax(group.subtotal, tax_rate)
        quotes.append(
            GroupQuote(
                chef_id=group.chef_id,
                subtotal=group.subtotal,
                delivery_fee=fee if fee is not None else ZERO,
                fee_withheld=fee is None,
                tax=group_tax,
                discount=group_discount,
                final_amount=final_amount(group.subtotal, fee, group_tax, group_discount),
            )
        )
    return quotes
