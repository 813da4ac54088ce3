"""Exceptions for django-checkout.

Every exception carries a stable ``code`` used in API error responses and a
``retryable`` flag telling callers whether the same request may succeed later.
"""


class CheckoutError(Exception):
    """Base exception for checkout errors."""

    code = 'checkout_error'
    retryable = False


# =============================================================================
# Validation - rejected synchronously, nothing is persisted
# =============================================================================

class CartValidationError(CheckoutError):
    """The submitted cart cannot be turned into an order."""

    code = 'invalid_cart'


class EmptyCartError(CartValidationError):
    """Cart has no lines."""

    code = 'empty_cart'

    def __init__(self):
        super().__init__("Cart is empty")


class ProductUnavailableError(CartValidationError):
    """Referenced product does not exist, was deleted, or is inactive."""

    code = 'product_unavailable'

    def __init__(self, product_ref: str):
        self.product_ref = product_ref
        super().__init__(f"Product '{product_ref}' is not available for purchase")


class InvalidCartLineError(CartValidationError):
    """A cart line is malformed (bad quantity, missing product ref)."""

    code = 'invalid_cart_line'


class PriceChangedError(CartValidationError):
    """Client-held price no longer matches the catalog."""

    code = 'price_changed'

    def __init__(self, product_ref: str, expected, current):
        self.product_ref = product_ref
        self.expected = expected
        self.current = current
        super().__init__(
            f"Price of '{product_ref}' changed from {expected} to {current}"
        )


class MixedCurrencyError(CartValidationError):
    """Cart contains items priced in different currencies."""

    code = 'mixed_currency'


# =============================================================================
# State
# =============================================================================

class OrderNotFoundError(CheckoutError):
    """Order does not exist or does not belong to the buyer."""

    code = 'order_not_found'


class OrderStateError(CheckoutError):
    """Requested transition is not allowed from the order's current status."""

    code = 'invalid_order_state'

    def __init__(self, message: str, current_status: str = ''):
        self.current_status = current_status
        super().__init__(message)


# =============================================================================
# Trust - logged, never silently fulfilled
# =============================================================================

class PaymentTrustError(CheckoutError):
    """Gateway-reported data contradicts the ledger's own record."""

    code = 'payment_untrusted'


class AmountMismatchError(PaymentTrustError):
    """Reported payment amount or currency differs from the order total."""

    code = 'amount_mismatch'

    def __init__(self, order_id, expected, reported):
        self.order_id = order_id
        self.expected = expected
        self.reported = reported
        super().__init__(
            f"Order {order_id}: gateway reported {reported}, expected {expected}"
        )


# =============================================================================
# Transient infrastructure - safe to retry
# =============================================================================

class GatewayUnavailableError(CheckoutError):
    """Payment gateway could not be reached or refused the request."""

    code = 'gateway_unavailable'
    retryable = True

    def __init__(self, message: str, provider: str = '', original_error: Exception = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(f"[{provider}] {message}" if provider else message)


class FulfillmentError(CheckoutError):
    """Base exception for entitlement fulfillment errors."""

    code = 'fulfillment_error'


class EntitlementGrantError(FulfillmentError):
    """A grant failed; the order stays paid and will be retried."""

    code = 'entitlement_grant_failed'
    retryable = True


# =============================================================================
# Terminal - require operator attention
# =============================================================================

class FulfillmentFailedError(FulfillmentError):
    """Fulfillment retries are exhausted; the order needs manual recovery."""

    code = 'fulfillment_failed'
