# app/exceptions.py
"""Domain errors raised by the services layer.

Routes translate these into flashes / HTTP codes; the services never
render anything themselves.
"""


class MarketplaceError(Exception):
    """Base for every error the services raise on purpose."""

    status_code = 400
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message


# -- gateway --

class GatewayConfigError(MarketplaceError):
    """Missing or malformed Paystack key. Blocks the payment UI."""

    status_code = 503
    user_message = "Payment gateway not configured. Please contact support."


class ScriptLoadTimeout(MarketplaceError):
    """The hosted widget script could not be fetched or never exposed PaystackPop."""

    status_code = 503
    user_message = "Failed to load payment gateway. Please reload the page and try again."


class GatewayNotReady(RuntimeError):
    """initiate_payment() called before load_gateway_script() resolved.

    A programming-contract violation, deliberately not a MarketplaceError.
    """


class GatewayError(MarketplaceError):
    status_code = 502
    user_message = "Failed to contact payment gateway. Please try again."


# -- orders / payments --

class OrderNotFound(MarketplaceError):
    status_code = 404
    user_message = "Order not found."


class PermissionDenied(MarketplaceError):
    status_code = 403
    user_message = "You are not allowed to do that."


class InvalidTransition(MarketplaceError):
    status_code = 409
    user_message = "This order can no longer be changed that way."

    def __init__(self, current, trigger, message: str | None = None):
        self.current = current
        self.trigger = trigger
        super().__init__(message or f"cannot apply {trigger!r} to an order in status {current!r}")


class OrderValidationError(MarketplaceError):
    user_message = "Please check the order details."


class PaymentMismatch(MarketplaceError):
    status_code = 409
    user_message = "The gateway reported a different amount for this payment. Please contact support."


class DuplicateCharge(MarketplaceError):
    """A verified charge arrived for an order that is no longer awaiting payment.

    Retrying cannot clear it; the charge needs a manual refund.
    """

    status_code = 409
    user_message = "This order was already paid. The extra charge will be refunded by support."


class PaymentPersistenceError(MarketplaceError):
    """Money moved at the gateway but the local record could not be written."""

    status_code = 500
    user_message = "Payment recorded but order update failed, please contact support."


# -- withdrawals / limits --

class WithdrawalValidationError(MarketplaceError):
    user_message = "Invalid withdrawal request."


class RateLimitExceeded(MarketplaceError):
    status_code = 429
    user_message = "Too many requests. Please wait a moment and try again."
