"""Pydantic request/response schemas for the Marketplace API.

These are external contracts, kept separate from the internal Protean
commands they are translated into.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class StrictModel(BaseModel):
    """Request bodies reject keys they do not declare."""

    model_config = ConfigDict(extra="forbid")


class AddressSchema(StrictModel):
    recipient: str | None = None
    street: str
    city: str
    state: str | None = None
    postal_code: str
    country: str
    phone: str | None = None


# ---------------------------------------------------------------------------
# Vendor Request Schemas
# ---------------------------------------------------------------------------
class RegisterVendorRequest(StrictModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Green Grocer",
                    "code": "GREEN",
                    "owner_id": "user-vendor-001",
                    "commission_rate": 10.0,
                    "tax_rate": 0.0,
                    "delivery_fee": 2.5,
                    "packaging_fee": 0.5,
                    "delivery_mode": "Platform",
                    "payment_methods": ["Card", "Cash", "Wallet"],
                }
            ]
        }
    }

    name: str = Field(..., max_length=200)
    code: str = Field(..., max_length=12)
    owner_id: str
    commission_rate: float | None = Field(None, ge=0, le=100)
    tax_rate: float = Field(0.0, ge=0, le=100)
    delivery_fee: float = Field(0.0, ge=0)
    packaging_fee: float = Field(0.0, ge=0)
    delivery_mode: str | None = None
    payment_methods: list[str] | None = None


class AddVendorStaffRequest(StrictModel):
    user_id: str
    position: str = "Staff"


class UpdateVendorTermsRequest(StrictModel):
    commission_rate: float | None = Field(None, ge=0, le=100)
    tax_rate: float | None = Field(None, ge=0, le=100)
    delivery_fee: float | None = Field(None, ge=0)
    packaging_fee: float | None = Field(None, ge=0)
    delivery_mode: str | None = None
    payment_methods: list[str] | None = None


class SetActiveRequest(StrictModel):
    is_active: bool


class RegisterDeliveryAgentRequest(StrictModel):
    user_id: str
    name: str | None = None


class SetAgentAvailabilityRequest(StrictModel):
    is_available: bool


# ---------------------------------------------------------------------------
# Product Request Schemas
# ---------------------------------------------------------------------------
class ListProductRequest(StrictModel):
    vendor_id: str
    name: str = Field(..., max_length=255)
    price: float = Field(..., ge=0)
    initial_stock: int = Field(0, ge=0)


class ChangePriceRequest(StrictModel):
    new_price: float = Field(..., ge=0)


class SetStockRequest(StrictModel):
    quantity: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# Promotion Request Schemas
# ---------------------------------------------------------------------------
class CreatePromotionRequest(StrictModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Summer sale",
                    "code": "SUMMER10",
                    "promotion_type": "Percentage",
                    "value": 10,
                    "starts_at": "2026-06-01T00:00:00Z",
                    "ends_at": "2026-09-01T00:00:00Z",
                }
            ]
        }
    }

    name: str = Field(..., max_length=200)
    description: str | None = None
    code: str | None = Field(None, max_length=50)
    promotion_type: str
    value: float = 0.0
    vendor_id: str | None = None
    starts_at: datetime
    ends_at: datetime
    minimum_purchase: float = Field(0.0, ge=0)
    maximum_discount: float = Field(0.0, ge=0)
    per_customer_limit: int = Field(0, ge=0)
    total_limit: int = Field(0, ge=0)
    applicable_products: list[str] | None = None
    excluded_products: list[str] | None = None
    buy_quantity: int = Field(0, ge=0)
    get_quantity: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Cart Request Schemas
# ---------------------------------------------------------------------------
class CreateCartRequest(StrictModel):
    customer_id: str | None = None
    session_id: str | None = None


class AddToCartRequest(StrictModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartQuantityRequest(StrictModel):
    new_quantity: int = Field(..., ge=1)


class ApplyDiscountRequest(StrictModel):
    code: str | None = None
    promotion_id: str | None = None
    vendor_id: str | None = None


class RemoveDiscountRequest(StrictModel):
    code: str | None = None
    promotion_id: str | None = None


class MergeGuestCartRequest(StrictModel):
    guest_cart_id: str


class SaveCartRequest(StrictModel):
    name: str = Field(..., min_length=1, max_length=100)


class LoadSavedCartRequest(StrictModel):
    saved_cart_id: str
    replace: bool = False


class RefreshCartRequest(StrictModel):
    fulfillment_type: str | None = None


class CheckoutRequest(StrictModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "payment_method": "Card",
                    "fulfillment_type": "Delivery",
                    "shipping_address": {
                        "recipient": "Jane Doe",
                        "street": "123 Main St",
                        "city": "Springfield",
                        "postal_code": "62701",
                        "country": "US",
                    },
                }
            ]
        }
    }

    payment_method: str
    fulfillment_type: str | None = None
    shipping_address: AddressSchema | None = None


class DetectAbandonedCartsRequest(StrictModel):
    idle_threshold_hours: int | None = Field(None, ge=1)
    as_of: datetime | None = None


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class UpdateOrderStatusRequest(StrictModel):
    status: str
    note: str | None = None
    attachment: str | None = None
    expected_status: str | None = None


class CancelOrderRequest(StrictModel):
    reason: str = Field(..., max_length=500)
    expected_status: str | None = None


class CompleteOrderRequest(StrictModel):
    note: str | None = None


class AssignDeliveryAgentRequest(StrictModel):
    delivery_agent_id: str | None = None
    location: str | None = None
    expected_status: str | None = None


class UpdateDeliveryStatusRequest(StrictModel):
    delivery_status: str
    location: str | None = None
    note: str | None = None
    return_to_vendor: bool = False


# ---------------------------------------------------------------------------
# Payment Request Schemas
# ---------------------------------------------------------------------------
class RefundPaymentRequest(StrictModel):
    amount: float
    reason: str = Field(..., max_length=500)
    target: str = "Original"


# ---------------------------------------------------------------------------
# Wallet Request Schemas
# ---------------------------------------------------------------------------
class OpenWalletRequest(StrictModel):
    user_id: str


class WalletTransactionRequest(StrictModel):
    transaction_type: str
    amount: float
    description: str | None = None
    reference: str | None = None
    expected_sequence: int | None = Field(None, ge=0)


class TransferFundsRequest(StrictModel):
    target_wallet_id: str
    amount: float = Field(..., gt=0)
    description: str | None = None
    expected_sequence: int | None = Field(None, ge=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class IdResponse(BaseModel):
    id: str


class StatusResponse(BaseModel):
    status: str = "ok"


class DiscountAppliedResponse(BaseModel):
    cart: dict
    discount_amount: float


class CountResponse(BaseModel):
    count: int


class PaymentStatusResponse(BaseModel):
    payment_id: str
    status: str


class CouponQuoteResponse(BaseModel):
    promotion_id: str
    code: str | None = None
    scope: str
    vendor_id: str | None = None
    amount: float
