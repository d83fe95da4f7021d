# marketplace/services/gateway/stripe_adapter.py
from decimal import Decimal

import stripe

from marketplace.domain.errors import ErrorCode, GatewayFailure, GatewayTimeout, ValidationFailed
from marketplace.services.gateway.port import (
    IntentResult,
    PaymentGateway,
    RefundResult,
    WebhookEvent,
    from_cents,
    to_cents,
)
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import GATEWAY_TIMEOUT_SECONDS

logger = get_logger(__name__)


class StripeGateway(PaymentGateway):
    """PaymentIntent based adapter over the stripe SDK."""

    def __init__(self, api_key: str, webhook_secret: str, timeout: float = GATEWAY_TIMEOUT_SECONDS) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        # bounded network time for every SDK call
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def create_intent(self, amount, currency, metadata, idempotency_key=None) -> IntentResult:
        intent = self._call(
            stripe.PaymentIntent.create,
            amount=to_cents(amount),
            currency=currency,
            metadata={k: str(v) for k, v in metadata.items()},
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )
        return self._to_result(intent)

    def retrieve_intent(self, intent_id: str) -> IntentResult:
        return self._to_result(self._call(stripe.PaymentIntent.retrieve, intent_id))

    def confirm_intent(self, intent_id: str, payment_method: str | None = None) -> IntentResult:
        params = {"payment_method": payment_method} if payment_method else {}
        return self._to_result(self._call(stripe.PaymentIntent.confirm, intent_id, **params))

    def create_refund(self, intent_id: str, amount: Decimal | None, reason: str | None) -> RefundResult:
        params = {"payment_intent": intent_id, "metadata": {"reason": reason or ""}}
        if amount is not None:
            params["amount"] = to_cents(amount)
        refund = self._call(stripe.Refund.create, **params)
        return RefundResult(refund_id=refund["id"], status=refund["status"], amount=from_cents(refund["amount"]))

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected webhook: {e}")
            raise ValidationFailed("Invalid webhook signature", code=ErrorCode.INVALID_WEBHOOK_SIGNATURE) from e

        obj = event["data"]["object"]
        return WebhookEvent(
            event_id=event["id"],
            type=event["type"],
            intent_id=obj["id"] if obj["object"] == "payment_intent" else None,
            data={"id": obj["id"], "object": obj["object"]},
        )

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.APIConnectionError as e:
            logger.error(f"Stripe unreachable: {e}")
            raise GatewayTimeout("Payment gateway did not respond in time") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe error: {e.user_message or e}")
            raise GatewayFailure(
                "Payment gateway error",
                details={"gateway_code": getattr(e, "code", None)},
            ) from e

    @staticmethod
    def _to_result(intent) -> IntentResult:
        return IntentResult(
            intent_id=intent["id"],
            status=intent["status"],
            amount=from_cents(intent["amount"]),
            currency=intent["currency"],
            client_secret=intent["client_secret"],
        )
