# marketplace/repos/cart_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_customer(self, customer_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel)
            .options(selectinload(CartModel.items))
            .where(CartModel.customer_id == customer_id)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_item(self, cart: CartModel, meal_id: int) -> CartItemModel | None:
        for item in cart.items:
            if item.meal_id == meal_id:
                return item
        return None

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        """
        UPDATE carts SET ... WHERE id = :id AND version = :old_version
        0 rows means someone else changed the cart since it was read.
        """
        # pending item changes go out before the version bump
        self.db.flush()
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
