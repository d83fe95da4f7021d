# marketplace/api/routers/payments.py
from fastapi import APIRouter, Depends, Header, Request

from marketplace.api.dependencies import get_payment_service, get_principal
from marketplace.api.responses import ok
from marketplace.domain.principal import Principal
from marketplace.domain.schemas import (
    ConfirmIn,
    ConfirmOut,
    CreateIntentIn,
    Envelope,
    IntentOut,
    RefundIn,
    RefundOut,
    RetryIn,
    RetryOut,
    WebhookAckOut,
)
from marketplace.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


async def raw_body(request: Request) -> bytes:
    # signature is computed over the exact bytes
    return await request.body()


@router.post("/intents", response_model=Envelope[IntentOut], status_code=201)
def create_intent(
    payload: CreateIntentIn,
    principal: Principal = Depends(get_principal),
    svc: PaymentService = Depends(get_payment_service),
):
    return ok(svc.create_intent(payload.order_id, principal, payload.amount, payload.currency))


@router.post("/confirm", response_model=Envelope[ConfirmOut])
def confirm_payment(
    payload: ConfirmIn,
    principal: Principal = Depends(get_principal),
    svc: PaymentService = Depends(get_payment_service),
):
    return ok(svc.confirm(payload.payment_intent_id, principal, payload.payment_method))


@router.post("/refund", response_model=Envelope[RefundOut])
def refund_payment(
    payload: RefundIn,
    principal: Principal = Depends(get_principal),
    svc: PaymentService = Depends(get_payment_service),
):
    return ok(svc.refund(payload.order_id, principal, payload.amount, payload.reason))


@router.post("/retry", response_model=Envelope[RetryOut])
def retry_payment(
    payload: RetryIn,
    principal: Principal = Depends(get_principal),
    svc: PaymentService = Depends(get_payment_service),
):
    return ok(svc.retry(payload.order_id, principal))


@router.post("/webhook", response_model=Envelope[WebhookAckOut])
def payment_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    svc: PaymentService = Depends(get_payment_service),
):
    """Gateway callback; no user identity, authenticated by signature."""
    return ok(svc.reconcile_webhook(payload, stripe_signature))
