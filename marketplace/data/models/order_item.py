# marketplace/data/models/order_item.py
from sqlalchemy import Column, Integer, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    meal_id = Column(Integer, nullable=False)
    chef_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    special_instructions = Column(String(500), nullable=True)

    order = relationship("OrderModel", back_populates="items")
