# marketplace/data/models/cart_item.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, Numeric, String, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    meal_id = Column(Integer, nullable=False)
    chef_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    special_instructions = Column(String(500), nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    cart = relationship("CartModel", back_populates="items")

    __table_args__ = (UniqueConstraint("cart_id", "meal_id", name="u_cart_meal"),)
