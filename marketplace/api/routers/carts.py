# marketplace/api/routers/carts.py
from fastapi import APIRouter, Depends

from marketplace.api.dependencies import get_cart_service, require_customer
from marketplace.api.responses import ok
from marketplace.domain.principal import Principal
from marketplace.domain.schemas import (
    AddItemIn,
    CartOut,
    CartSummaryOut,
    CartValidationOut,
    DeliveryAddressIn,
    DeliveryTypeIn,
    Envelope,
    NotesIn,
    PromoCodeIn,
    UpdateQuantityIn,
)
from marketplace.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=Envelope[CartOut])
def get_cart(
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.get_cart(principal.user_id))


@router.get("/summary", response_model=Envelope[CartSummaryOut])
def get_summary(
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    """Price preview: same per-chef quote checkout will charge."""
    return ok(svc.summary(principal.user_id))


@router.get("/validate", response_model=Envelope[CartValidationOut])
def validate_cart(
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.validate(principal.user_id))


@router.post("/items", response_model=Envelope[CartOut])
def add_item(
    payload: AddItemIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(
        svc.add_item(
            customer_id=principal.user_id,
            meal_id=payload.meal_id,
            chef_id=payload.chef_id,
            quantity=payload.quantity,
            price=payload.price,
            special_instructions=payload.special_instructions,
        )
    )


@router.put("/items/{meal_id}", response_model=Envelope[CartOut])
def update_quantity(
    meal_id: int,
    payload: UpdateQuantityIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.update_quantity(principal.user_id, meal_id, payload.quantity))


@router.delete("/items/{meal_id}", response_model=Envelope[CartOut])
def remove_item(
    meal_id: int,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.remove_item(principal.user_id, meal_id))


@router.delete("", response_model=Envelope[CartOut])
def clear_cart(
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.clear(principal.user_id))


@router.put("/delivery-address", response_model=Envelope[CartOut])
def update_delivery_address(
    payload: DeliveryAddressIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.update_delivery_address(principal.user_id, payload.model_dump(exclude_unset=True)))


@router.put("/delivery-type", response_model=Envelope[CartOut])
def update_delivery_type(
    payload: DeliveryTypeIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.update_delivery_type(principal.user_id, payload.delivery_type))


@router.put("/notes", response_model=Envelope[CartOut])
def update_notes(
    payload: NotesIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.update_notes(principal.user_id, payload.notes))


@router.post("/promo-code", response_model=Envelope[CartOut])
def apply_promo(
    payload: PromoCodeIn,
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.apply_promo(principal.user_id, payload.code))


@router.delete("/promo-code", response_model=Envelope[CartOut])
def remove_promo(
    principal: Principal = Depends(require_customer),
    svc: CartService = Depends(get_cart_service),
):
    return ok(svc.remove_promo(principal.user_id))
