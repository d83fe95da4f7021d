# marketplace/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric, Float, Text
from sqlalchemy.orm import relationship

from marketplace.data.database import Base


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, nullable=False, unique=True, index=True)

    delivery_type = Column(String(20), nullable=False, default="delivery")
    street = Column(String(100), nullable=True)
    city = Column(String(50), nullable=True)
    state = Column(String(50), nullable=True)
    zip_code = Column(String(10), nullable=True)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)

    promo_code = Column(String(20), nullable=True)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.id",
    )

    @property
    def coordinates(self) -> tuple[float, float] | None:
        # (longitude, latitude)
        if self.longitude is None or self.latitude is None:
            return None
        return (self.longitude, self.latitude)
