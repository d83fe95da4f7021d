# marketplace/data/models/chef.py
from sqlalchemy import Column, Integer, String, Float, Boolean

from marketplace.data.database import Base


class ChefModel(Base):
    """Read-only here; owned by the catalog service."""

    __tablename__ = "chefs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    business_name = Column(String(100), nullable=False)

    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    service_radius_km = Column(Float, nullable=False, default=10.0)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)
