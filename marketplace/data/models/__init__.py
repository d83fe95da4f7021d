# import all models so they register on Base.metadata

from marketplace.data.models.chef import ChefModel
from marketplace.data.models.meal import MealModel
from marketplace.data.models.cart import CartModel
from marketplace.data.models.cart_item import CartItemModel
from marketplace.data.models.order import OrderModel
from marketplace.data.models.order_item import OrderItemModel

__all__ = [
    "ChefModel",
    "MealModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderItemModel",
]
