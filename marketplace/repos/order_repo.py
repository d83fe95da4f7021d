# marketplace/repos/order_repo.py
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from marketplace.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        # no commit here, checkout commits all orders of a cart together
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def list_by_payment_intent(self, payment_intent_id: str) -> list[OrderModel]:
        # one intent may pay for every order of a checkout
        return list(
            self.db.execute(
                select(OrderModel)
                .where(OrderModel.payment_intent_id == payment_intent_id)
                .order_by(OrderModel.id)
            ).scalars()
        )

    def get_by_checkout(self, checkout_id: str) -> list[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(OrderModel.checkout_id == checkout_id)
                .order_by(OrderModel.id)
            ).scalars()
        )

    def list_orders(
        self,
        customer_id: int | None = None,
        chef_id: int | None = None,
        status: str | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> tuple[list[OrderModel], int]:
        conditions = []
        if customer_id is not None:
            conditions.append(OrderModel.customer_id == customer_id)
        if chef_id is not None:
            conditions.append(OrderModel.chef_id == chef_id)
        if status is not None:
            conditions.append(OrderModel.status == status)

        total = self.db.execute(
            select(func.count()).select_from(OrderModel).where(*conditions)
        ).scalar_one()

        rows = self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(*conditions)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(skip)
            .limit(limit)
        ).scalars().all()

        return list(rows), total

    def update_order_version(self, order_id: int, old_version: int, new_data: dict) -> int:
        """Compare-and-set on version, same contract as CartRepo.update_cart_version."""
        self.db.flush()
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
