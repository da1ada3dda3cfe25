"""FastAPI routes for the Marketplace domain.

Every write goes through ``dispatch`` so it runs under the locks of the
resources it touches. Actors are identified by the ``X-User-Id`` and
``X-User-Role`` headers set by the authentication layer in front of us.
"""

import json

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from marketplace.api.schemas import (
    AddToCartRequest,
    AddVendorStaffRequest,
    ApplyDiscountRequest,
    AssignDeliveryAgentRequest,
    CancelOrderRequest,
    ChangePriceRequest,
    CheckoutRequest,
    CompleteOrderRequest,
    CountResponse,
    CouponQuoteResponse,
    CreateCartRequest,
    CreatePromotionRequest,
    DetectAbandonedCartsRequest,
    DiscountAppliedResponse,
    IdResponse,
    ListProductRequest,
    LoadSavedCartRequest,
    MergeGuestCartRequest,
    OpenWalletRequest,
    PaymentStatusResponse,
    RefreshCartRequest,
    RefundPaymentRequest,
    RegisterDeliveryAgentRequest,
    RegisterVendorRequest,
    RemoveDiscountRequest,
    SaveCartRequest,
    SetActiveRequest,
    SetAgentAvailabilityRequest,
    SetStockRequest,
    StatusResponse,
    TransferFundsRequest,
    UpdateCartQuantityRequest,
    UpdateDeliveryStatusRequest,
    UpdateOrderStatusRequest,
    UpdateVendorTermsRequest,
    WalletTransactionRequest,
)
from marketplace.cart.abandonment import DetectAbandonedCarts
from marketplace.cart.cart import Cart
from marketplace.cart.discounts import ApplyDiscount, RemoveDiscount, validate_coupon
from marketplace.cart.items import AddToCart, RemoveFromCart, UpdateCartQuantity
from marketplace.cart.management import ClearCart, CreateCart, MergeGuestCart, RefreshCart
from marketplace.cart.saved import LoadSavedCart, SaveCart, save_lock_keys, saved_carts_for
from marketplace.catalogue.management import ChangeProductPrice, DeactivateProduct, ListProduct, SetStockLevel
from marketplace.checkout.checkout import Checkout, dispatch_checkout
from marketplace.delivery.agent import RegisterDeliveryAgent, SetAgentAvailability
from marketplace.order.delivery import AssignDeliveryAgent, ReassignDeliveryAgent, UpdateDeliveryStatus
from marketplace.order.lifecycle import CancelOrder, CompleteOrder, UpdateOrderStatus, dispatch_order
from marketplace.order.order import Order
from marketplace.payment.payment import Payment
from marketplace.payment.processing import ProcessPayment, dispatch_payment, payments_for_order
from marketplace.payment.refund import RefundPayment, RetryRefund, dispatch_refund
from marketplace.projections.order_summary import orders_for_customer, orders_for_vendor
from marketplace.promotion.management import CreatePromotion, DeactivatePromotion
from marketplace.shared.dispatch import dispatch
from marketplace.shared.locks import agent_key, cart_key, promotion_key, vendor_key, wallet_key, wallet_owner_key
from marketplace.vendor.management import AddVendorStaff, RegisterVendor, SetVendorActive, UpdateVendorTerms
from marketplace.wallet.transactions import OpenWallet, RecordWalletTransaction, TransferFunds
from marketplace.wallet.wallet import Wallet


def actor_headers(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> dict:
    """The caller's identity as command fields."""
    return {"actor_id": x_user_id, "actor_role": x_user_role}


def _json_list(values):
    return json.dumps(values) if values is not None else None


# ---------------------------------------------------------------------------
# Vendor Router
# ---------------------------------------------------------------------------
vendor_router = APIRouter(prefix="/vendors", tags=["vendors"])


@vendor_router.post("", status_code=201, response_model=IdResponse)
async def register_vendor(body: RegisterVendorRequest) -> IdResponse:
    command = RegisterVendor(
        name=body.name,
        code=body.code,
        owner_id=body.owner_id,
        commission_rate=body.commission_rate,
        tax_rate=body.tax_rate,
        delivery_fee=body.delivery_fee,
        packaging_fee=body.packaging_fee,
        delivery_mode=body.delivery_mode,
        payment_methods=_json_list(body.payment_methods),
    )
    return IdResponse(id=dispatch(command))


@vendor_router.post("/{vendor_id}/staff", response_model=StatusResponse)
async def add_vendor_staff(vendor_id: str, body: AddVendorStaffRequest) -> StatusResponse:
    command = AddVendorStaff(vendor_id=vendor_id, user_id=body.user_id, position=body.position)
    dispatch(command, vendor_key(vendor_id))
    return StatusResponse()


@vendor_router.put("/{vendor_id}/terms", response_model=StatusResponse)
async def update_vendor_terms(vendor_id: str, body: UpdateVendorTermsRequest) -> StatusResponse:
    command = UpdateVendorTerms(
        vendor_id=vendor_id,
        commission_rate=body.commission_rate,
        tax_rate=body.tax_rate,
        delivery_fee=body.delivery_fee,
        packaging_fee=body.packaging_fee,
        delivery_mode=body.delivery_mode,
        payment_methods=_json_list(body.payment_methods),
    )
    dispatch(command, vendor_key(vendor_id))
    return StatusResponse()


@vendor_router.put("/{vendor_id}/active", response_model=StatusResponse)
async def set_vendor_active(vendor_id: str, body: SetActiveRequest) -> StatusResponse:
    dispatch(SetVendorActive(vendor_id=vendor_id, is_active=body.is_active), vendor_key(vendor_id))
    return StatusResponse()


@vendor_router.post("/delivery-agents", status_code=201, response_model=IdResponse)
async def register_delivery_agent(body: RegisterDeliveryAgentRequest) -> IdResponse:
    command = RegisterDeliveryAgent(user_id=body.user_id, name=body.name)
    return IdResponse(id=dispatch(command, agent_key(body.user_id)))


@vendor_router.put("/delivery-agents/{user_id}/availability", response_model=StatusResponse)
async def set_agent_availability(user_id: str, body: SetAgentAvailabilityRequest) -> StatusResponse:
    dispatch(SetAgentAvailability(user_id=user_id, is_available=body.is_available), agent_key(user_id))
    return StatusResponse()


# ---------------------------------------------------------------------------
# Product Router
# ---------------------------------------------------------------------------
product_router = APIRouter(prefix="/products", tags=["products"])


@product_router.post("", status_code=201, response_model=IdResponse)
async def list_product(body: ListProductRequest) -> IdResponse:
    command = ListProduct(
        vendor_id=body.vendor_id,
        name=body.name,
        price=body.price,
        initial_stock=body.initial_stock,
    )
    return IdResponse(id=dispatch(command))


@product_router.put("/{product_id}/price", response_model=StatusResponse)
async def change_product_price(product_id: str, body: ChangePriceRequest) -> StatusResponse:
    dispatch(ChangeProductPrice(product_id=product_id, new_price=body.new_price))
    return StatusResponse()


@product_router.put("/{product_id}/deactivate", response_model=StatusResponse)
async def deactivate_product(product_id: str) -> StatusResponse:
    dispatch(DeactivateProduct(product_id=product_id))
    return StatusResponse()


@product_router.put("/{product_id}/stock", response_model=StatusResponse)
async def set_stock_level(product_id: str, body: SetStockRequest) -> StatusResponse:
    dispatch(SetStockLevel(product_id=product_id, quantity=body.quantity))
    return StatusResponse()


# ---------------------------------------------------------------------------
# Promotion Router
# ---------------------------------------------------------------------------
promotion_router = APIRouter(prefix="/promotions", tags=["promotions"])


@promotion_router.post("", status_code=201, response_model=IdResponse)
async def create_promotion(body: CreatePromotionRequest) -> IdResponse:
    command = CreatePromotion(
        name=body.name,
        description=body.description,
        code=body.code,
        promotion_type=body.promotion_type,
        value=body.value,
        vendor_id=body.vendor_id,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        minimum_purchase=body.minimum_purchase,
        maximum_discount=body.maximum_discount,
        per_customer_limit=body.per_customer_limit,
        total_limit=body.total_limit,
        applicable_products=_json_list(body.applicable_products),
        excluded_products=_json_list(body.excluded_products),
        buy_quantity=body.buy_quantity,
        get_quantity=body.get_quantity,
    )
    return IdResponse(id=dispatch(command))


@promotion_router.put("/{promotion_id}/deactivate", response_model=StatusResponse)
async def deactivate_promotion(promotion_id: str) -> StatusResponse:
    dispatch(DeactivatePromotion(promotion_id=promotion_id), promotion_key(promotion_id))
    return StatusResponse()


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


def _cart_view(cart_id: str) -> dict:
    return current_domain.repository_for(Cart).get(cart_id).to_dict()


@cart_router.post("", status_code=201, response_model=IdResponse)
async def create_cart(body: CreateCartRequest) -> IdResponse:
    owner_key = f"cart-owner:{body.customer_id or body.session_id}"
    command = CreateCart(customer_id=body.customer_id, session_id=body.session_id)
    return IdResponse(id=dispatch(command, owner_key))


@cart_router.get("/{cart_id}")
async def get_cart(cart_id: str) -> dict:
    return _cart_view(cart_id)


@cart_router.post("/{cart_id}/items")
async def add_cart_item(cart_id: str, body: AddToCartRequest) -> dict:
    dispatch(AddToCart(cart_id=cart_id, product_id=body.product_id, quantity=body.quantity), cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.put("/{cart_id}/items/{item_id}")
async def update_cart_item_quantity(cart_id: str, item_id: str, body: UpdateCartQuantityRequest) -> dict:
    command = UpdateCartQuantity(cart_id=cart_id, item_id=item_id, new_quantity=body.new_quantity)
    dispatch(command, cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.delete("/{cart_id}/items/{item_id}")
async def remove_cart_item(cart_id: str, item_id: str) -> dict:
    dispatch(RemoveFromCart(cart_id=cart_id, item_id=item_id), cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.post("/{cart_id}/discounts", response_model=DiscountAppliedResponse)
async def apply_discount(cart_id: str, body: ApplyDiscountRequest) -> DiscountAppliedResponse:
    command = ApplyDiscount(
        cart_id=cart_id,
        code=body.code,
        promotion_id=body.promotion_id,
        vendor_id=body.vendor_id,
    )
    amount = dispatch(command, cart_key(cart_id))
    return DiscountAppliedResponse(cart=_cart_view(cart_id), discount_amount=amount)


@cart_router.post("/{cart_id}/discounts/validate", response_model=CouponQuoteResponse)
async def validate_discount(cart_id: str, body: ApplyDiscountRequest) -> CouponQuoteResponse:
    quote = validate_coupon(cart_id, code=body.code, promotion_id=body.promotion_id, vendor_id=body.vendor_id)
    return CouponQuoteResponse(**quote)


@cart_router.delete("/{cart_id}/discounts")
async def remove_discount(cart_id: str, body: RemoveDiscountRequest) -> dict:
    dispatch(RemoveDiscount(cart_id=cart_id, code=body.code, promotion_id=body.promotion_id), cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.post("/{cart_id}/clear")
async def clear_cart(cart_id: str) -> dict:
    dispatch(ClearCart(cart_id=cart_id), cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.post("/{cart_id}/merge", response_model=CountResponse)
async def merge_guest_cart(cart_id: str, body: MergeGuestCartRequest) -> CountResponse:
    command = MergeGuestCart(cart_id=cart_id, guest_cart_id=body.guest_cart_id)
    merged = dispatch(command, cart_key(cart_id), cart_key(body.guest_cart_id))
    return CountResponse(count=merged)


@cart_router.post("/{cart_id}/refresh")
async def refresh_cart(cart_id: str, body: RefreshCartRequest) -> dict:
    dispatch(RefreshCart(cart_id=cart_id, fulfillment_type=body.fulfillment_type), cart_key(cart_id))
    return _cart_view(cart_id)


@cart_router.post("/{cart_id}/save", status_code=201, response_model=IdResponse)
async def save_cart(cart_id: str, body: SaveCartRequest) -> IdResponse:
    return IdResponse(id=dispatch(SaveCart(cart_id=cart_id, name=body.name), *save_lock_keys(cart_id)))


@cart_router.get("/saved/{customer_id}")
async def list_saved_carts(customer_id: str) -> dict:
    return {"saved_carts": [saved.to_dict() for saved in saved_carts_for(customer_id)]}


@cart_router.post("/{cart_id}/load", response_model=CountResponse)
async def load_saved_cart(cart_id: str, body: LoadSavedCartRequest) -> CountResponse:
    command = LoadSavedCart(cart_id=cart_id, saved_cart_id=body.saved_cart_id, replace=body.replace)
    return CountResponse(count=dispatch(command, cart_key(cart_id)))


@cart_router.post("/{cart_id}/checkout", status_code=201)
async def checkout_cart(cart_id: str, body: CheckoutRequest, actor: dict = Depends(actor_headers)) -> JSONResponse:
    """Split the cart into one order per vendor.

    Returns 201 when at least one order was placed. When every vendor
    failed, returns 409 with the per-vendor failures and leaves the cart as
    it was.
    """
    command = Checkout(
        cart_id=cart_id,
        payment_method=body.payment_method,
        fulfillment_type=body.fulfillment_type,
        shipping_address=body.shipping_address.model_dump_json() if body.shipping_address else None,
        **actor,
    )
    result = dispatch_checkout(command)
    status_code = 201 if result["orders"] else 409
    return JSONResponse(status_code=status_code, content=result)


@cart_router.post("/abandoned", response_model=CountResponse)
async def detect_abandoned_carts(body: DetectAbandonedCartsRequest) -> CountResponse:
    command = DetectAbandonedCarts(idle_threshold_hours=body.idle_threshold_hours, as_of=body.as_of)
    return CountResponse(count=dispatch(command))


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


def _order_view(order_id: str) -> dict:
    return current_domain.repository_for(Order).get(order_id).to_dict()


@order_router.get("")
async def list_orders(customer_id: str | None = None, vendor_id: str | None = None, status: str | None = None) -> dict:
    """A customer's order history or a vendor's order queue."""
    if bool(customer_id) == bool(vendor_id):
        raise ValidationError({"customer_id": ["Filter by exactly one of customer_id or vendor_id"]})
    if customer_id:
        summaries = orders_for_customer(customer_id, status=status)
    else:
        summaries = orders_for_vendor(vendor_id, status=status)
    return {"orders": [summary.to_dict() for summary in summaries]}


@order_router.get("/{order_id}")
async def get_order(order_id: str) -> dict:
    return _order_view(order_id)


@order_router.get("/{order_id}/payments")
async def get_order_payments(order_id: str) -> dict:
    current_domain.repository_for(Order).get(order_id)
    return {"payments": [payment.to_dict() for payment in payments_for_order(order_id)]}


@order_router.put("/{order_id}/status")
async def update_order_status(
    order_id: str, body: UpdateOrderStatusRequest, actor: dict = Depends(actor_headers)
) -> dict:
    command = UpdateOrderStatus(
        order_id=order_id,
        status=body.status,
        note=body.note,
        attachment=body.attachment,
        expected_status=body.expected_status,
        **actor,
    )
    dispatch_order(command)
    return _order_view(order_id)


@order_router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, body: CancelOrderRequest, actor: dict = Depends(actor_headers)) -> dict:
    command = CancelOrder(order_id=order_id, reason=body.reason, expected_status=body.expected_status, **actor)
    dispatch_order(command)
    return _order_view(order_id)


@order_router.post("/{order_id}/complete")
async def complete_order(order_id: str, body: CompleteOrderRequest) -> dict:
    dispatch_order(CompleteOrder(order_id=order_id, note=body.note))
    return _order_view(order_id)


@order_router.post("/{order_id}/delivery-agent")
async def assign_delivery_agent(
    order_id: str, body: AssignDeliveryAgentRequest, actor: dict = Depends(actor_headers)
) -> dict:
    command = AssignDeliveryAgent(
        order_id=order_id,
        delivery_agent_id=body.delivery_agent_id,
        location=body.location,
        expected_status=body.expected_status,
        **actor,
    )
    dispatch_order(command)
    return _order_view(order_id)


@order_router.put("/{order_id}/delivery-agent")
async def reassign_delivery_agent(
    order_id: str, body: AssignDeliveryAgentRequest, actor: dict = Depends(actor_headers)
) -> dict:
    command = ReassignDeliveryAgent(
        order_id=order_id,
        delivery_agent_id=body.delivery_agent_id,
        location=body.location,
        **actor,
    )
    dispatch_order(command)
    return _order_view(order_id)


@order_router.put("/{order_id}/delivery")
async def update_delivery_status(
    order_id: str, body: UpdateDeliveryStatusRequest, actor: dict = Depends(actor_headers)
) -> dict:
    command = UpdateDeliveryStatus(
        order_id=order_id,
        delivery_status=body.delivery_status,
        location=body.location,
        note=body.note,
        return_to_vendor=body.return_to_vendor,
        **actor,
    )
    dispatch_order(command)
    return _order_view(order_id)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/{payment_id}")
async def get_payment(payment_id: str) -> dict:
    return current_domain.repository_for(Payment).get(payment_id).to_dict()


@payment_router.post("/{payment_id}/process", response_model=PaymentStatusResponse)
async def process_payment(payment_id: str, actor: dict = Depends(actor_headers)) -> PaymentStatusResponse:
    status = dispatch_payment(ProcessPayment(payment_id=payment_id, **actor))
    return PaymentStatusResponse(payment_id=payment_id, status=status)


@payment_router.post("/{payment_id}/refunds")
async def refund_payment(payment_id: str, body: RefundPaymentRequest, actor: dict = Depends(actor_headers)) -> dict:
    command = RefundPayment(
        payment_id=payment_id,
        amount=body.amount,
        reason=body.reason,
        target=body.target,
        **actor,
    )
    return dispatch_refund(command)


@payment_router.post("/{payment_id}/refunds/{refund_id}/retry")
async def retry_refund(payment_id: str, refund_id: str, actor: dict = Depends(actor_headers)) -> dict:
    return dispatch_refund(RetryRefund(payment_id=payment_id, refund_id=refund_id, **actor))


# ---------------------------------------------------------------------------
# Wallet Router
# ---------------------------------------------------------------------------
wallet_router = APIRouter(prefix="/wallets", tags=["wallets"])


def _wallet_view(wallet_id: str) -> dict:
    return current_domain.repository_for(Wallet).get(wallet_id).to_dict()


@wallet_router.post("", status_code=201, response_model=IdResponse)
async def open_wallet(body: OpenWalletRequest) -> IdResponse:
    return IdResponse(id=dispatch(OpenWallet(user_id=body.user_id), wallet_owner_key(body.user_id)))


@wallet_router.get("/{wallet_id}")
async def get_wallet(wallet_id: str) -> dict:
    return _wallet_view(wallet_id)


@wallet_router.post("/{wallet_id}/transactions")
async def record_wallet_transaction(
    wallet_id: str, body: WalletTransactionRequest, actor: dict = Depends(actor_headers)
) -> dict:
    command = RecordWalletTransaction(
        wallet_id=wallet_id,
        transaction_type=body.transaction_type,
        amount=body.amount,
        description=body.description,
        reference=body.reference,
        expected_sequence=body.expected_sequence,
        **actor,
    )
    transaction_id = dispatch(command, wallet_key(wallet_id))
    return {"transaction_id": transaction_id, "wallet": _wallet_view(wallet_id)}


@wallet_router.post("/{wallet_id}/transfers")
async def transfer_funds(wallet_id: str, body: TransferFundsRequest, actor: dict = Depends(actor_headers)) -> dict:
    command = TransferFunds(
        source_wallet_id=wallet_id,
        target_wallet_id=body.target_wallet_id,
        amount=body.amount,
        description=body.description,
        expected_sequence=body.expected_sequence,
        **actor,
    )
    transaction_id = dispatch(command, wallet_key(wallet_id), wallet_key(body.target_wallet_id))
    return {"transaction_id": transaction_id, "wallet": _wallet_view(wallet_id)}
