# marketplace/data/models/meal.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, Date, Time, ForeignKey, CheckConstraint

from marketplace.data.database import Base


class MealModel(Base):
    """
    Catalog data is written by the catalog service.
    Availability counters (remaining_quantity, total_orders) are only
    touched through InventoryService.
    """

    __tablename__ = "meals"

    id = Column(Integer, primary_key=True)
    chef_id = Column(Integer, ForeignKey("chefs.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    preparation_time = Column(Integer, nullable=True)  # minutes

    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    available_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    total_orders = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_meal_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= quantity", name="ck_meal_remaining_le_quantity"),
        CheckConstraint("total_orders >= 0", name="ck_meal_total_orders_non_negative"),
    )
