# marketplace/services/gateway/fake_adapter.py
"""
In-memory gateway for development and tests.

Intents live in a dict. Tests steer outcomes with set_status(),
queue_statuses() (what successive retrieves report) and fail_next().
"""
import json
from collections import deque
from decimal import Decimal
from uuid import uuid4

from marketplace.domain.errors import ErrorCode, GatewayFailure, ValidationFailed
from marketplace.services.gateway.port import (
    REQUIRES_CONFIRMATION,
    REQUIRES_PAYMENT_METHOD,
    SUCCEEDED,
    IntentResult,
    PaymentGateway,
    RefundResult,
    WebhookEvent,
)

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.intents: dict[str, dict] = {}
        self.refunds: list[RefundResult] = []
        self.calls: list[dict] = []
        self._scripted: dict[str, deque] = {}
        self._failure: Exception | None = None

    # steering
    def configure(self, should_succeed: bool) -> None:
        """Whether confirm_intent ends in succeeded or requires_payment_method."""
        self.should_succeed = should_succeed

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id]["status"] = status

    def queue_statuses(self, intent_id: str, statuses: list[str]) -> None:
        self._scripted[intent_id] = deque(statuses)

    def fail_next(self, error: Exception | None = None) -> None:
        self._failure = error or GatewayFailure("Fake gateway unavailable")

    def add_intent(self, intent_id: str, amount: Decimal, status: str, currency: str = "usd") -> None:
        self.intents[intent_id] = {"amount": Decimal(amount), "currency": currency, "status": status}

    # port
    def create_intent(self, amount, currency, metadata, idempotency_key=None) -> IntentResult:
        self._record("create_intent", amount=amount, currency=currency, metadata=metadata)
        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        self.add_intent(intent_id, amount, REQUIRES_CONFIRMATION, currency)
        return self._result(intent_id, client_secret=f"{intent_id}_secret")

    def retrieve_intent(self, intent_id: str) -> IntentResult:
        self._record("retrieve_intent", intent_id=intent_id)
        intent = self._intent(intent_id)
        script = self._scripted.get(intent_id)
        if script:
            intent["status"] = script.popleft()
        return self._result(intent_id)

    def confirm_intent(self, intent_id: str, payment_method: str | None = None) -> IntentResult:
        self._record("confirm_intent", intent_id=intent_id, payment_method=payment_method)
        intent = self._intent(intent_id)
        if intent["status"] in (REQUIRES_CONFIRMATION, REQUIRES_PAYMENT_METHOD):
            intent["status"] = SUCCEEDED if self.should_succeed else REQUIRES_PAYMENT_METHOD
        return self._result(intent_id)

    def create_refund(self, intent_id: str, amount, reason) -> RefundResult:
        self._record("create_refund", intent_id=intent_id, amount=amount, reason=reason)
        intent = self._intent(intent_id)
        refund = RefundResult(
            refund_id=f"re_fake_{uuid4().hex[:12]}",
            status=SUCCEEDED,
            amount=Decimal(amount) if amount is not None else intent["amount"],
        )
        self.refunds.append(refund)
        return refund

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        if signature != TEST_SIGNATURE:
            raise ValidationFailed("Invalid webhook signature", code=ErrorCode.INVALID_WEBHOOK_SIGNATURE)
        body = json.loads(payload)
        obj = body.get("data", {}).get("object", {})
        return WebhookEvent(
            event_id=body.get("id", f"evt_fake_{uuid4().hex[:12]}"),
            type=body["type"],
            intent_id=obj.get("id"),
            data=obj,
        )

    # helpers
    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

    def _intent(self, intent_id: str) -> dict:
        try:
            return self.intents[intent_id]
        except KeyError:
            raise GatewayFailure(f"No such payment intent: {intent_id}") from None

    def _result(self, intent_id: str, client_secret: str | None = None) -> IntentResult:
        intent = self.intents[intent_id]
        return IntentResult(
            intent_id=intent_id,
            status=intent["status"],
            amount=intent["amount"],
            currency=intent["currency"],
            client_secret=client_secret,
        )
