# marketplace/services/gateway/port.py
"""
Payment gateway port.

The payment service only talks to this interface; StripeGateway and
FakeGateway are interchangeable behind it. Adapters raise GatewayTimeout /
GatewayFailure for transport problems and never return a made-up status.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal

# PaymentIntent statuses the payment service reacts to
SUCCEEDED = "succeeded"
REQUIRES_PAYMENT_METHOD = "requires_payment_method"
REQUIRES_CONFIRMATION = "requires_confirmation"
CANCELED = "canceled"
PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class IntentResult:
    intent_id: str
    status: str
    amount: Decimal
    currency: str
    client_secret: str | None = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Decimal


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    type: str
    intent_id: str | None
    data: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    @abstractmethod
    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
        idempotency_key: str | None = None,
    ) -> IntentResult:
        ...

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> IntentResult:
        ...

    @abstractmethod
    def confirm_intent(self, intent_id: str, payment_method: str | None = None) -> IntentResult:
        ...

    @abstractmethod
    def create_refund(self, intent_id: str, amount: Decimal | None, reason: str | None) -> RefundResult:
        """amount=None refunds the full captured amount."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify the signature and decode the event. Bad signatures raise ValidationFailed."""
        ...


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
