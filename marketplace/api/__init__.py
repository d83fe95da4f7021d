# marketplace/api/__init__.py
from fastapi import FastAPI

from marketplace.api.errors import register_error_handlers
from marketplace.api.routers import carts, health, orders, payments


def create_app(**kwargs) -> FastAPI:
    app = FastAPI(title="Marketplace Checkout Service", version="1.0.0", **kwargs)

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)

    return app
