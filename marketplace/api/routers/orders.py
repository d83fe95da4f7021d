# marketplace/api/routers/orders.py
from fastapi import APIRouter, Depends, Header, Query

from marketplace.api.dependencies import (
    get_checkout_service,
    get_order_service,
    get_principal,
    require_chef,
    require_customer,
)
from marketplace.api.responses import ok
from marketplace.domain.principal import Principal
from marketplace.domain.schemas import (
    CancelIn,
    CheckoutIn,
    CheckoutOut,
    Envelope,
    OrderOut,
    OrderPageOut,
    OrderStatus,
    TrackingOut,
    UpdateStatusIn,
)
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=Envelope[CheckoutOut], status_code=201)
def checkout(
    payload: CheckoutIn,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key", max_length=255),
    principal: Principal = Depends(require_customer),
    svc: CheckoutService = Depends(get_checkout_service),
):
    """
    Turns the cart into one order per chef.
    All orders are created or none; repeat with the same Idempotency-Key to get the same result.
    """
    return ok(
        svc.checkout(
            customer_id=principal.user_id,
            payment_intent_id=payload.payment_intent_id,
            customer_notes=payload.customer_notes,
            idempotency_key=idempotency_key,
        )
    )


@router.get("", response_model=Envelope[OrderPageOut])
def list_my_orders(
    status: OrderStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    principal: Principal = Depends(require_customer),
    svc: OrderService = Depends(get_order_service),
):
    return ok(svc.list_customer_orders(principal.user_id, status=status, limit=limit, skip=skip))


@router.get("/chef", response_model=Envelope[OrderPageOut])
def list_chef_orders(
    status: OrderStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    principal: Principal = Depends(require_chef),
    svc: OrderService = Depends(get_order_service),
):
    return ok(svc.list_chef_orders(principal.chef_id, status=status, limit=limit, skip=skip))


@router.get("/{order_id}", response_model=Envelope[OrderOut])
def get_order(
    order_id: int,
    principal: Principal = Depends(get_principal),
    svc: OrderService = Depends(get_order_service),
):
    return ok(svc.get_order(order_id, principal))


@router.get("/{order_id}/tracking", response_model=Envelope[TrackingOut])
def track_order(
    order_id: int,
    principal: Principal = Depends(get_principal),
    svc: OrderService = Depends(get_order_service),
):
    return ok(svc.tracking(order_id, principal))


@router.put("/{order_id}/status", response_model=Envelope[OrderOut])
def update_status(
    order_id: int,
    payload: UpdateStatusIn,
    principal: Principal = Depends(require_chef),
    svc: OrderService = Depends(get_order_service),
):
    return ok(
        svc.update_status(
            order_id,
            payload.status,
            chef_id=principal.chef_id,
            notes=payload.notes,
            estimated_delivery_time=payload.estimated_delivery_time,
        )
    )


@router.post("/{order_id}/cancel", response_model=Envelope[OrderOut])
def cancel_order(
    order_id: int,
    payload: CancelIn,
    principal: Principal = Depends(get_principal),
    svc: OrderService = Depends(get_order_service),
):
    return ok(svc.cancel(order_id, principal, payload.reason))
