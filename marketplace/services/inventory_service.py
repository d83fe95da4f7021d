# marketplace/services/inventory_service.py
from sqlalchemy import case, update
from sqlalchemy.orm import Session

from marketplace.data.models.meal import MealModel
from marketplace.domain.errors import ConflictError, ErrorCode, ValidationFailed
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


class InventoryService:
    """
    Reserve / release meal portions.

    Each call is one conditional UPDATE inside the caller's transaction,
    so the database serializes concurrent checkouts on the same meal row.
    Nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, meal_id: int, amount: int) -> None:
        if amount <= 0:
            raise ValidationFailed("Reservation amount must be positive", details={"meal_id": meal_id})

        # UPDATE meals SET remaining = remaining - :n ... WHERE id = :id AND remaining >= :n
        result = self.db.execute(
            update(MealModel)
            .where(MealModel.id == meal_id, MealModel.remaining_quantity >= amount)
            .values(
                remaining_quantity=MealModel.remaining_quantity - amount,
                total_orders=MealModel.total_orders + amount,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(f"Reservation of {amount} x meal {meal_id} rejected")
            raise ConflictError(
                "Requested quantity is not available",
                code=ErrorCode.INSUFFICIENT_AVAILABILITY,
                details={"meal_id": meal_id, "requested": amount},
            )

        logger.info(f"Reserved {amount} x meal {meal_id}")

    def release(self, meal_id: int, amount: int) -> None:
        if amount <= 0:
            return

        restored = MealModel.remaining_quantity + amount
        consumed = MealModel.total_orders - amount

        self.db.execute(
            update(MealModel)
            .where(MealModel.id == meal_id)
            .values(
                remaining_quantity=case(
                    (restored > MealModel.quantity, MealModel.quantity),
                    else_=restored,
                ),
                total_orders=case((consumed < 0, 0), else_=consumed),
            )
            .execution_options(synchronize_session=False)
        )

        logger.info(f"Released {amount} x meal {meal_id}")

    def release_items(self, items) -> None:
        for item in items:
            self.release(item.meal_id, item.quantity)
