# marketplace/api/dependencies.py
import time

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from marketplace.data.database import get_db
from marketplace.domain.errors import NotAuthenticated, NotAuthorized
from marketplace.domain.principal import CHEF, CUSTOMER, ROLES, Principal
from marketplace.services.cart_service import CartService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.gateway import get_gateway
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService
from marketplace.services.payment_service import PaymentService
from marketplace.utils.clock import utcnow

_lock_service: LockService | None = None


# collaborators (overridden in tests)
def get_lock_service() -> LockService:
    global _lock_service
    if _lock_service is None:
        _lock_service = LockService()
    return _lock_service


def get_notifier() -> NotificationService:
    return NotificationService()


def get_clock():
    return utcnow


def get_sleep():
    return time.sleep


def get_payment_gateway():
    return get_gateway()


# identity, injected by the upstream auth gateway
def get_principal(
    x_user_id: int | None = Header(None),
    x_user_role: str = Header(CUSTOMER),
    x_chef_id: int | None = Header(None),
) -> Principal:
    if x_user_id is None:
        raise NotAuthenticated("Missing user identity")
    if x_user_role not in ROLES:
        raise NotAuthenticated(f"Unknown role: {x_user_role}")
    return Principal(user_id=x_user_id, role=x_user_role, chef_id=x_chef_id)


def require_customer(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != CUSTOMER:
        raise NotAuthorized("Customer access required")
    return principal


def require_chef(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != CHEF or principal.chef_id is None:
        raise NotAuthorized("Chef access required")
    return principal


# services
def get_cart_service(db: Session = Depends(get_db), clock=Depends(get_clock)) -> CartService:
    return CartService(db, clock=clock)


def get_checkout_service(
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
    notifier: NotificationService = Depends(get_notifier),
    clock=Depends(get_clock),
) -> CheckoutService:
    return CheckoutService(db, lock_service=lock_service, notifier=notifier, clock=clock)


def get_order_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
    clock=Depends(get_clock),
) -> OrderService:
    return OrderService(db, notifier=notifier, clock=clock)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notifier),
    lock_service: LockService = Depends(get_lock_service),
    clock=Depends(get_clock),
    sleep=Depends(get_sleep),
) -> PaymentService:
    return PaymentService(
        db, gateway=gateway, notifier=notifier, lock_service=lock_service, clock=clock, sleep=sleep
    )
