# marketplace/domain/errors.py
from typing import Any, Optional


class ServiceError(Exception):
    """Base for every failure a core operation reports to its caller.

    Attributes:
        code: stable machine-readable identifier (e.g. ``InsufficientAvailability``)
        message: human-readable message
        details: optional mapping / list with extra context
        http_status: suggested HTTP status for handlers
    """

    http_status = 400
    default_code = "ServiceError"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return self.message


class ValidationFailed(ServiceError):
    """Input rejected before any mutation. Safe to retry after correction."""

    http_status = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(ServiceError):
    http_status = 404
    default_code = "NOT_FOUND"


class NotAuthenticated(ServiceError):
    http_status = 401
    default_code = "UNAUTHORIZED"


class NotAuthorized(ServiceError):
    http_status = 403
    default_code = "NotAuthorized"


class ConflictError(ServiceError):
    """State conflict or resource contention. Nothing was mutated."""

    http_status = 409
    default_code = "CONFLICT"


class GatewayFailure(ServiceError):
    """The payment gateway failed or could not be reached."""

    http_status = 502
    default_code = "GatewayError"


class GatewayTimeout(GatewayFailure):
    http_status = 504
    default_code = "GatewayTimeout"


class ErrorCode:
    # cart
    MEAL_NOT_FOUND = "MealNotFound"
    MEAL_NOT_AVAILABLE = "MealNotAvailable"
    MEAL_PRICE_MISMATCH = "MealPriceMismatch"
    CHEF_MISMATCH = "ChefMismatch"
    CHEF_NOT_FOUND = "ChefNotFound"
    ITEM_NOT_FOUND = "ItemNotFound"
    INVALID_PROMO_CODE = "InvalidPromoCode"
    INSUFFICIENT_AVAILABILITY = "InsufficientAvailability"

    # checkout
    EMPTY_CART = "EmptyCart"
    CART_EXPIRED = "CartExpired"
    INCOMPLETE_DELIVERY_ADDRESS = "IncompleteDeliveryAddress"
    ITEMS_UNAVAILABLE = "ItemsUnavailable"
    CHECKOUT_IN_PROGRESS = "CheckoutInProgress"

    # orders
    ORDER_NOT_FOUND = "OrderNotFound"
    INVALID_STATUS_TRANSITION = "InvalidStatusTransition"
    ORDER_NOT_CANCELLABLE = "OrderNotCancellable"
    CONCURRENT_UPDATE = "ConcurrentUpdate"

    # payments
    ORDER_NOT_ELIGIBLE = "OrderNotEligible"
    AMOUNT_MISMATCH = "AmountMismatch"
    PAYMENT_INCOMPLETE = "PaymentIncomplete"
    PAYMENT_FAILED = "PaymentFailed"
    INVALID_PAYMENT_STATUS = "InvalidPaymentStatus"
    INVALID_REFUND_AMOUNT = "InvalidRefundAmount"
    MISSING_PAYMENT_INTENT = "MissingPaymentIntent"
    PAYMENT_ALREADY_SUCCESSFUL = "PaymentAlreadySuccessful"
    PAYMENT_RETRY_EXHAUSTED = "PaymentRetryExhausted"
    INVALID_WEBHOOK_SIGNATURE = "InvalidWebhookSignature"
