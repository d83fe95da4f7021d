# marketplace/repos/catalog_repo.py
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.data.models.chef import ChefModel
from marketplace.data.models.meal import MealModel


class CatalogRepo:
    """Read side of the catalog (meals, chefs). Writes belong to the catalog service.

    Meals are always re-read from the database: availability counters move
    through bulk UPDATEs that bypass the identity map.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_meal(self, meal_id: int) -> MealModel | None:
        return self.db.get(MealModel, meal_id, populate_existing=True)

    def get_meals(self, meal_ids: Iterable[int]) -> dict[int, MealModel]:
        ids = set(meal_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(MealModel)
            .where(MealModel.id.in_(ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {meal.id: meal for meal in rows}

    def get_chefs(self, chef_ids: Iterable[int]) -> dict[int, ChefModel]:
        ids = set(chef_ids)
        if not ids:
            return {}
        rows = self.db.execute(select(ChefModel).where(ChefModel.id.in_(ids))).scalars().all()
        return {chef.id: chef for chef in rows}

