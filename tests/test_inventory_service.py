"""Conditional-update reservations: never oversell, release is clamped."""
import threading
from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import NOW
from marketplace.data.database import Base
from marketplace.data.models import ChefModel, MealModel
from marketplace.domain.errors import ConflictError, ValidationFailed
from marketplace.services.inventory_service import InventoryService


@pytest.fixture
def inventory(db):
    return InventoryService(db)


class TestReserve:
    def test_reserve_moves_counters(self, inventory, catalog, stock, db):
        inventory.reserve(catalog.lasagna.id, 3)
        db.commit()

        assert stock(catalog.lasagna.id) == (7, 3)

    def test_reserve_everything_left(self, inventory, catalog, stock):
        inventory.reserve(catalog.bowl.id, 5)
        assert stock(catalog.bowl.id) == (0, 5)

    def test_reserve_more_than_remaining(self, inventory, catalog, stock):
        with pytest.raises(ConflictError) as exc:
            inventory.reserve(catalog.bowl.id, 6)

        assert exc.value.code == "InsufficientAvailability"
        assert stock(catalog.bowl.id) == (5, 0)

    def test_unknown_meal(self, inventory, catalog):
        with pytest.raises(ConflictError):
            inventory.reserve(999, 1)

    @pytest.mark.parametrize("amount", [0, -2])
    def test_amount_must_be_positive(self, inventory, catalog, amount):
        with pytest.raises(ValidationFailed):
            inventory.reserve(catalog.lasagna.id, amount)


class TestRelease:
    def test_release_restores(self, inventory, catalog, stock):
        inventory.reserve(catalog.lasagna.id, 4)
        inventory.release(catalog.lasagna.id, 3)

        assert stock(catalog.lasagna.id) == (9, 1)

    def test_release_clamped_to_capacity_and_zero(self, inventory, catalog, stock):
        inventory.reserve(catalog.lasagna.id, 2)
        inventory.release(catalog.lasagna.id, 5)

        assert stock(catalog.lasagna.id) == (10, 0)

    def test_release_zero_is_noop(self, inventory, catalog, stock):
        inventory.release(catalog.lasagna.id, 0)
        assert stock(catalog.lasagna.id) == (10, 0)

    def test_counters_are_conserved(self, inventory, catalog, stock):
        meal_id = catalog.lasagna.id
        for action, amount in [("reserve", 3), ("reserve", 4), ("release", 2), ("reserve", 5), ("release", 1)]:
            getattr(inventory, action)(meal_id, amount)
            remaining, total_orders = stock(meal_id)
            assert remaining + total_orders == 10
            assert 0 <= remaining <= 10

        assert stock(meal_id) == (1, 9)


def test_concurrent_reservations_never_oversell(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inventory.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with Session() as setup:
        setup.add(ChefModel(id=1, user_id=101, business_name="Nonna's Kitchen", longitude=-73.99, latitude=40.75))
        setup.add(
            MealModel(id=1, chef_id=1, name="Lasagna", price=Decimal("15.99"), quantity=5, remaining_quantity=5,
                      available_date=NOW.date(), start_time=time(9, 0), end_time=time(21, 0))
        )
        setup.commit()

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def buy():
        session = Session()
        try:
            barrier.wait()
            try:
                InventoryService(session).reserve(1, 1)
                session.commit()
                outcome = "reserved"
            except ConflictError:
                session.rollback()
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=buy) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    with Session() as check:
        meal = check.get(MealModel, 1)
        remaining, total_orders = meal.remaining_quantity, meal.total_orders

    engine.dispose()

    assert outcomes.count("reserved") == 5
    assert outcomes.count("rejected") == 3
    assert (remaining, total_orders) == (0, 5)
