"""
Payment gateway factory.

get_gateway() builds the adapter named by PAYMENT_GATEWAY once;
set_gateway() / reset_gateway() let tests swap it.
"""
from marketplace.services.gateway.fake_adapter import FakeGateway
from marketplace.services.gateway.port import PaymentGateway
from marketplace.utils.settings import PAYMENT_GATEWAY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

_current_gateway: PaymentGateway | None = None


def build_gateway(kind: str = PAYMENT_GATEWAY) -> PaymentGateway:
    if kind == "stripe":
        from marketplace.services.gateway.stripe_adapter import StripeGateway

        return StripeGateway(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
    if kind == "fake":
        return FakeGateway()
    raise ValueError(f"Unknown payment gateway: {kind}")


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
