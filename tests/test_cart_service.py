"""Cart aggregate: merge rules, availability checks, promo, expiry, optimistic version."""
from datetime import time, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from conftest import ADDRESS, CUSTOMER_ID, NOW
from marketplace.data.models import CartModel
from marketplace.domain.errors import ConflictError, NotFoundError, ValidationFailed
from marketplace.services.cart_service import group_by_chef


def add(cart_service, meal, quantity=1, price=None, notes=None):
    return cart_service.add_item(
        CUSTOMER_ID,
        meal_id=meal.id,
        chef_id=meal.chef_id,
        quantity=quantity,
        price=price if price is not None else meal.price,
        special_instructions=notes,
    )


class TestGetCart:
    def test_cart_is_created_lazily(self, cart_service, db):
        view = cart_service.get_cart(CUSTOMER_ID)

        assert view["customer_id"] == CUSTOMER_ID
        assert view["items"] == []
        assert view["delivery_type"] == "delivery"
        assert view["expires_at"] == NOW + timedelta(hours=24)
        assert db.execute(select(CartModel)).scalars().one().customer_id == CUSTOMER_ID

    def test_same_cart_on_every_read(self, cart_service):
        assert cart_service.get_cart(CUSTOMER_ID)["cart_id"] == cart_service.get_cart(CUSTOMER_ID)["cart_id"]


class TestAddItem:
    def test_adds_line(self, cart_service, catalog):
        view = add(cart_service, catalog.lasagna, quantity=2, notes="extra cheese")

        assert len(view["items"]) == 1
        item = view["items"][0]
        assert item["meal_id"] == catalog.lasagna.id
        assert item["chef_id"] == catalog.chef_a.id
        assert item["quantity"] == 2
        assert item["unit_price"] == Decimal("15.99")
        assert item["line_total"] == Decimal("31.98")
        assert item["special_instructions"] == "extra cheese"
        assert view["subtotal"] == Decimal("31.98")
        assert view["item_count"] == 2

    def test_re_adding_merges_into_one_line(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna, quantity=2, notes="extra cheese")
        clock.advance(minutes=5)
        view = add(cart_service, catalog.lasagna, quantity=3, notes="no basil")

        assert len(view["items"]) == 1
        assert view["items"][0]["quantity"] == 5
        assert view["items"][0]["special_instructions"] == "no basil"
        assert view["items"][0]["added_at"] == NOW + timedelta(minutes=5)

    def test_mutation_pushes_expiry_forward(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna)
        clock.advance(hours=2)
        view = add(cart_service, catalog.tiramisu)

        assert view["expires_at"] == NOW + timedelta(hours=26)

    def test_price_within_one_cent_is_accepted(self, cart_service, catalog):
        view = add(cart_service, catalog.lasagna, price=Decimal("15.98"))
        assert view["items"][0]["unit_price"] == Decimal("15.99")

    def test_price_mismatch(self, cart_service, catalog):
        with pytest.raises(ValidationFailed) as exc:
            add(cart_service, catalog.lasagna, price=Decimal("14.99"))
        assert exc.value.code == "MealPriceMismatch"

    def test_chef_mismatch(self, cart_service, catalog):
        with pytest.raises(ValidationFailed) as exc:
            cart_service.add_item(CUSTOMER_ID, catalog.lasagna.id, catalog.chef_b.id, 1, Decimal("15.99"))
        assert exc.value.code == "ChefMismatch"

    def test_unknown_meal(self, cart_service, catalog):
        with pytest.raises(NotFoundError) as exc:
            cart_service.add_item(CUSTOMER_ID, 999, catalog.chef_a.id, 1, Decimal("1.00"))
        assert exc.value.code == "MealNotFound"

    def test_deleted_meal(self, cart_service, catalog, db):
        catalog.tiramisu.is_deleted = True
        db.commit()

        with pytest.raises(NotFoundError) as exc:
            add(cart_service, catalog.tiramisu)
        assert exc.value.code == "MealNotFound"

    def test_inactive_meal(self, cart_service, catalog, db):
        catalog.tiramisu.is_active = False
        db.commit()

        with pytest.raises(ConflictError) as exc:
            add(cart_service, catalog.tiramisu)
        assert exc.value.code == "MealNotAvailable"

    def test_merged_quantity_is_checked_against_stock(self, cart_service, catalog):
        add(cart_service, catalog.bowl, quantity=3)

        with pytest.raises(ConflictError) as exc:
            add(cart_service, catalog.bowl, quantity=3)

        assert exc.value.code == "InsufficientAvailability"
        assert cart_service.get_cart(CUSTOMER_ID)["items"][0]["quantity"] == 3

    @pytest.mark.parametrize("quantity", [0, 101])
    def test_quantity_bounds(self, cart_service, catalog, quantity):
        with pytest.raises(ValidationFailed):
            add(cart_service, catalog.lasagna, quantity=quantity)


class TestUpdateQuantity:
    def test_sets_quantity(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        view = cart_service.update_quantity(CUSTOMER_ID, catalog.lasagna.id, 4)

        assert view["items"][0]["quantity"] == 4

    def test_zero_removes_line(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        add(cart_service, catalog.masala)

        view = cart_service.update_quantity(CUSTOMER_ID, catalog.lasagna.id, 0)

        assert [i["meal_id"] for i in view["items"]] == [catalog.masala.id]

    def test_more_than_remaining(self, cart_service, catalog):
        add(cart_service, catalog.bowl)

        with pytest.raises(ConflictError) as exc:
            cart_service.update_quantity(CUSTOMER_ID, catalog.bowl.id, 6)
        assert exc.value.code == "InsufficientAvailability"

    def test_missing_line(self, cart_service, catalog):
        with pytest.raises(NotFoundError) as exc:
            cart_service.update_quantity(CUSTOMER_ID, catalog.lasagna.id, 1)
        assert exc.value.code == "ItemNotFound"


class TestRemoveAndClear:
    def test_remove_item(self, cart_service, catalog):
        add(cart_service, catalog.lasagna)
        view = cart_service.remove_item(CUSTOMER_ID, catalog.lasagna.id)
        assert view["items"] == []

    def test_remove_missing_item(self, cart_service, catalog):
        with pytest.raises(NotFoundError) as exc:
            cart_service.remove_item(CUSTOMER_ID, catalog.lasagna.id)
        assert exc.value.code == "ItemNotFound"

    def test_clear_drops_lines_promo_and_notes(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        cart_service.apply_promo(CUSTOMER_ID, "SAVE5")
        cart_service.update_notes(CUSTOMER_ID, "ring twice")

        view = cart_service.clear(CUSTOMER_ID)

        assert view["items"] == []
        assert view["promo_code"] is None
        assert view["discount"] == Decimal("0.00")
        assert view["notes"] is None


class TestPromo:
    def test_apply_known_code(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        view = cart_service.apply_promo(CUSTOMER_ID, "welcome10")

        assert view["promo_code"] == "WELCOME10"
        assert view["discount"] == Decimal("10.00")

    def test_discount_capped_at_subtotal(self, cart_service, catalog):
        add(cart_service, catalog.masala)
        view = cart_service.apply_promo(CUSTOMER_ID, "FIRST20")
        assert view["discount"] == Decimal("10.00")

    def test_discount_recapped_when_items_shrink(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        cart_service.apply_promo(CUSTOMER_ID, "FIRST20")

        view = cart_service.update_quantity(CUSTOMER_ID, catalog.lasagna.id, 1)

        assert view["discount"] == Decimal("15.99")

    def test_unknown_code(self, cart_service, catalog):
        add(cart_service, catalog.lasagna)
        with pytest.raises(ValidationFailed) as exc:
            cart_service.apply_promo(CUSTOMER_ID, "FREEFOOD")
        assert exc.value.code == "InvalidPromoCode"

    def test_empty_cart(self, cart_service):
        with pytest.raises(ValidationFailed) as exc:
            cart_service.apply_promo(CUSTOMER_ID, "SAVE5")
        assert exc.value.code == "EmptyCart"

    def test_remove_promo(self, cart_service, catalog):
        add(cart_service, catalog.lasagna)
        cart_service.apply_promo(CUSTOMER_ID, "SAVE5")
        view = cart_service.remove_promo(CUSTOMER_ID)

        assert view["promo_code"] is None
        assert view["discount"] == Decimal("0.00")


class TestDelivery:
    def test_address_partial_merge(self, cart_service):
        cart_service.update_delivery_address(CUSTOMER_ID, ADDRESS)
        view = cart_service.update_delivery_address(CUSTOMER_ID, {"street": "1 Penn Plaza"})

        address = view["delivery_address"]
        assert address["street"] == "1 Penn Plaza"
        assert address["city"] == "New York"
        assert address["coordinates"] == ADDRESS["coordinates"]

    def test_delivery_type(self, cart_service):
        assert cart_service.update_delivery_type(CUSTOMER_ID, "pickup")["delivery_type"] == "pickup"

    def test_unknown_delivery_type(self, cart_service):
        with pytest.raises(ValidationFailed):
            cart_service.update_delivery_type(CUSTOMER_ID, "drone")


class TestExpiry:
    def test_expired_cart_reads_as_empty(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna, quantity=2)
        cart_service.apply_promo(CUSTOMER_ID, "SAVE5")
        clock.advance(hours=25)

        view = cart_service.get_cart(CUSTOMER_ID)

        assert view["items"] == []
        assert view["subtotal"] == Decimal("0.00")
        assert view["discount"] == Decimal("0.00")

    def test_mutation_after_expiry_drops_stale_lines(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna, quantity=2)
        clock.advance(hours=25)

        view = add(cart_service, catalog.masala)

        assert [i["meal_id"] for i in view["items"]] == [catalog.masala.id]
        assert view["expires_at"] == clock() + timedelta(hours=24)

    def test_same_meal_can_be_added_again_after_expiry(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna, quantity=2)
        clock.advance(hours=25)

        view = add(cart_service, catalog.lasagna, quantity=3)

        assert len(view["items"]) == 1
        assert view["items"][0]["quantity"] == 3


class TestAvailability:
    def test_all_ok(self, cart_service, catalog):
        add(cart_service, catalog.lasagna)
        add(cart_service, catalog.masala)

        result = cart_service.validate(CUSTOMER_ID)

        assert result["valid"]
        assert {v["status"] for v in result["items"]} == {"ok"}

    def test_verdicts(self, cart_service, catalog, db):
        for meal in (catalog.lasagna, catalog.tiramisu, catalog.masala, catalog.bowl):
            add(cart_service, meal, quantity=2)

        catalog.lasagna.is_deleted = True
        catalog.tiramisu.is_active = False
        catalog.masala.remaining_quantity = 1
        catalog.bowl.start_time = time(18, 0)
        db.commit()

        result = cart_service.validate(CUSTOMER_ID)
        verdicts = {v["meal_id"]: v["status"] for v in result["items"]}

        assert not result["valid"]
        assert verdicts == {
            catalog.lasagna.id: "mealDeleted",
            catalog.tiramisu.id: "inactive",
            catalog.masala.id: "insufficientQuantity",
            catalog.bowl.id: "outsideWindow",
        }

    def test_other_day_is_outside_window(self, cart_service, catalog, clock):
        add(cart_service, catalog.lasagna)
        clock.advance(hours=22)  # next day, 10:00

        assert cart_service.validate(CUSTOMER_ID)["items"][0]["status"] == "outsideWindow"

    def test_validation_does_not_mutate(self, cart_service, catalog, db):
        add(cart_service, catalog.lasagna, quantity=2)
        catalog.lasagna.remaining_quantity = 0
        db.commit()
        before = cart_service.get_cart(CUSTOMER_ID)

        cart_service.validate(CUSTOMER_ID)

        assert cart_service.get_cart(CUSTOMER_ID) == before


class TestGroupingAndSummary:
    def test_groups_in_order_of_first_line(self, cart_service, catalog, db):
        add(cart_service, catalog.masala)
        add(cart_service, catalog.lasagna, quantity=2)
        add(cart_service, catalog.tiramisu)

        cart = db.execute(select(CartModel)).scalars().one()
        groups = group_by_chef(cart.items)

        assert [g.chef_id for g in groups] == [catalog.chef_b.id, catalog.chef_a.id]
        assert groups[1].subtotal == Decimal("41.98")

    def test_pickup_summary(self, cart_service, catalog):
        add(cart_service, catalog.lasagna, quantity=2)
        cart_service.update_delivery_type(CUSTOMER_ID, "pickup")

        summary = cart_service.summary(CUSTOMER_ID)

        assert summary["subtotal"] == Decimal("31.98")
        assert summary["tax"] == Decimal("2.56")
        assert summary["delivery_fee"] == Decimal("0.00")
        assert summary["total"] == Decimal("34.54")
        assert summary["chef_count"] == 1
        assert summary["delivery_fees"][0]["withheld"]

    def test_delivery_summary_charges_per_chef(self, cart_service, catalog):
        add(cart_service, catalog.lasagna)
        add(cart_service, catalog.masala)
        cart_service.update_delivery_address(CUSTOMER_ID, ADDRESS)

        summary = cart_service.summary(CUSTOMER_ID)

        fees = [f["fee"] for f in summary["delivery_fees"]]
        assert len(fees) == 2
        assert all(fee > Decimal("2.00") for fee in fees)
        assert summary["delivery_fee"] == sum(fees)
        assert summary["total"] == summary["subtotal"] + summary["delivery_fee"] + summary["tax"]


class TestOptimisticVersion:
    def test_lost_race_is_reported(self, cart_service, catalog, db):
        add(cart_service, catalog.lasagna)

        # another writer bumps the version behind this session's back
        db.execute(
            update(CartModel)
            .where(CartModel.customer_id == CUSTOMER_ID)
            .values(version=CartModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        with pytest.raises(ConflictError) as exc:
            add(cart_service, catalog.tiramisu)
        assert exc.value.code == "ConcurrentUpdate"

        view = cart_service.get_cart(CUSTOMER_ID)
        assert [i["meal_id"] for i in view["items"]] == [catalog.lasagna.id]

    def test_version_increments(self, cart_service, catalog):
        first = cart_service.get_cart(CUSTOMER_ID)["version"]
        assert add(cart_service, catalog.lasagna)["version"] == first + 1
