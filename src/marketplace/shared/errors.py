"""Marketplace error taxonomy.

Every error is a Protean ``ValidationError`` so it carries ``messages`` in the
usual ``{"field": ["message"]}`` shape, plus an HTTP ``status_code`` used by
the API layer. Errors are raised from aggregate methods, resolvers and
handlers, never from ``@invariant`` checks (those stay plain
``ValidationError`` and signal a bug).
"""

from protean.exceptions import ValidationError


class MarketplaceError(ValidationError):
    status_code = 400
    field = "error"

    def __init__(self, message: str, field: str | None = None, **details):
        super().__init__({field or self.field: [message]})
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        payload = {"error": self.messages, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------
class CouponInvalid(MarketplaceError):
    status_code = 404
    field = "code"


class CouponScopeMismatch(MarketplaceError):
    field = "code"


class MinimumPurchaseNotMet(MarketplaceError):
    field = "code"


class UsageLimitExceeded(MarketplaceError):
    status_code = 409
    field = "code"


class CouponAlreadyApplied(MarketplaceError):
    status_code = 409
    field = "code"


# ---------------------------------------------------------------------------
# Cart and checkout
# ---------------------------------------------------------------------------
class OutOfStock(MarketplaceError):
    status_code = 409
    field = "product_id"


class InsufficientStock(MarketplaceError):
    status_code = 409
    field = "stock"


class EmptyCart(MarketplaceError):
    field = "cart"


class CartNotActive(MarketplaceError):
    status_code = 409
    field = "status"


class InvalidShippingAddress(MarketplaceError):
    field = "shipping_address"


class UnsupportedPaymentMethod(MarketplaceError):
    field = "payment_method"


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class InvalidTransition(MarketplaceError):
    status_code = 409
    field = "status"


class NotAuthorized(MarketplaceError):
    status_code = 403
    field = "actor"


class NoDeliveryAgentAvailable(MarketplaceError):
    status_code = 409
    field = "delivery_agent_id"


class ConcurrencyConflict(MarketplaceError):
    status_code = 409
    field = "version"


# ---------------------------------------------------------------------------
# Payments and wallets
# ---------------------------------------------------------------------------
class AlreadyRefunded(MarketplaceError):
    status_code = 409
    field = "payment"


class PaymentNotRefundable(MarketplaceError):
    status_code = 409
    field = "payment"


class InvalidRefundAmount(MarketplaceError):
    field = "amount"


class InsufficientFunds(MarketplaceError):
    status_code = 402
    field = "balance"


class InvalidWalletAmount(MarketplaceError):
    field = "amount"
