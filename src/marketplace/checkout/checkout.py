"""Checkout: split a cart into one order per vendor.

Each vendor's sub-order succeeds or fails on its own. A vendor that runs out
of stock, rejects the payment method, or cannot be paid for from the wallet
is reported in ``failures`` and leaves its items in the cart; the other
vendors' orders are still placed.
"""

import json
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart
from marketplace.cart.repricing import load_vendors, reprice, vendor_terms
from marketplace.checkout.factory import build_order, release_reservations, reserve_stock
from marketplace.domain import marketplace
from marketplace.order.lifecycle import notify_parties
from marketplace.order.order import Order, ShippingAddress
from marketplace.payment.payment import Payment
from marketplace.promotion.promotion import Promotion
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.choices import FulfillmentType, PaymentMethod
from marketplace.shared.clock import utcnow
from marketplace.shared.dispatch import dispatch_resolved
from marketplace.shared.errors import (
    EmptyCart,
    InsufficientFunds,
    InsufficientStock,
    InvalidShippingAddress,
    NotAuthorized,
    UnsupportedPaymentMethod,
)
from marketplace.shared.locks import cart_key, promotion_key, vendor_key, wallet_key, wallet_owner_key
from marketplace.shared.money import ZERO
from marketplace.wallet.transactions import find_wallet
from marketplace.wallet.wallet import Wallet

logger = structlog.get_logger(__name__)

# Per-vendor failures that are reported instead of aborting the checkout
VENDOR_FAILURES = (InsufficientStock, InsufficientFunds, UnsupportedPaymentMethod)


@marketplace.command(part_of="Cart")
class Checkout:
    cart_id = Identifier(required=True)
    payment_method = String(required=True, max_length=30)
    fulfillment_type = String(choices=FulfillmentType)  # Defaults to the cart's
    shipping_address = Text()  # JSON: address dict, required for delivery
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


def parse_payment_method(value, cart) -> PaymentMethod:
    try:
        method = PaymentMethod(value)
    except ValueError:
        raise UnsupportedPaymentMethod(f"Unknown payment method: {value}", field="payment_method") from None
    if method == PaymentMethod.WALLET and not cart.customer_id:
        raise UnsupportedPaymentMethod("Guests cannot pay from a wallet", field="payment_method")
    return method


def parse_shipping_address(raw) -> ShippingAddress:
    if not raw:
        raise InvalidShippingAddress("A shipping address is required for delivery")
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        raise InvalidShippingAddress("Shipping address is not valid JSON") from None
    if not isinstance(data, dict):
        raise InvalidShippingAddress("Shipping address must be an object")
    try:
        return ShippingAddress(**data)
    except (ValidationError, TypeError) as exc:
        raise InvalidShippingAddress(
            "Shipping address is incomplete",
            problems=getattr(exc, "messages", str(exc)),
        ) from exc


def _assert_owner(cart, actor: AuthContext) -> None:
    if actor.role == Role.CUSTOMER and cart.customer_id and str(cart.customer_id) != actor.user_id:
        raise NotAuthorized("You can only check out your own cart", role=actor.role.value)


def _contributing_promotions(quote, succeeded_vendor_ids) -> list[str]:
    """Promotions whose discount landed on at least one placed order."""
    lines = [line for vq in quote.vendors for line in vq.lines]
    return [
        discount.promotion_id
        for discount in quote.discounts
        if any(discount.share_for_vendor(vendor_id, lines) > ZERO for vendor_id in succeeded_vendor_ids)
    ]


@marketplace.command_handler(part_of=Cart)
class CheckoutHandler:
    @handle(Checkout)
    def checkout(self, command):
        cart_repo = current_domain.repository_for(Cart)
        cart = cart_repo.get(command.cart_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        cart._assert_active("check out")
        _assert_owner(cart, actor)
        method = parse_payment_method(command.payment_method, cart)
        if command.fulfillment_type and command.fulfillment_type != cart.fulfillment_type:
            cart.set_fulfillment_type(command.fulfillment_type)
        fulfillment = FulfillmentType(cart.fulfillment_type)
        address = parse_shipping_address(command.shipping_address) if fulfillment == FulfillmentType.DELIVERY else None

        now = utcnow()
        quote = reprice(cart, refresh_prices=True, now=now)
        if not quote.vendors:
            raise EmptyCart("Cannot check out an empty cart")

        checkout_id = str(uuid4())
        vendors = load_vendors(quote.vendor_ids)
        wallet = find_wallet(cart.customer_id) if method == PaymentMethod.WALLET else None
        if method == PaymentMethod.WALLET and wallet is None:
            # No wallet means no balance: every vendor fails on funds below
            wallet = Wallet.open(user_id=str(cart.customer_id), currency=cart.currency)

        placed: list[tuple[Order, Payment]] = []
        failures = []
        reserved = []
        try:
            for vendor_quote in quote.vendors:
                vendor = vendors[vendor_quote.vendor_id]
                try:
                    if not vendor.accepts(method.value):
                        raise UnsupportedPaymentMethod(
                            f"{vendor.name} does not accept {method.value} payments",
                            field="payment_method",
                        )
                    reservations = reserve_stock(vendor_quote)
                    if wallet is not None and vendor_quote.order_total > ZERO:
                        try:
                            wallet.debit(
                                vendor_quote.order_total,
                                description=f"Checkout {checkout_id}",
                                reference=f"checkout:{checkout_id}:{vendor_quote.vendor_id}",
                                actor_id=str(cart.customer_id),
                            )
                        except InsufficientFunds:
                            release_reservations(reservations)
                            raise
                except VENDOR_FAILURES as exc:
                    failures.append({"vendor_id": vendor_quote.vendor_id, "code": exc.code, "reason": exc.messages})
                    logger.warning(
                        "Vendor order not placed",
                        checkout_id=checkout_id,
                        vendor_id=vendor_quote.vendor_id,
                        code=exc.code,
                    )
                    continue

                reserved.extend(reservations)
                order, payment = build_order(
                    vendor=vendor,
                    quote=vendor_quote,
                    terms=vendor_terms(vendor),
                    checkout_id=checkout_id,
                    customer_id=str(cart.customer_id) if cart.customer_id else None,
                    payment_method=method.value,
                    fulfillment=fulfillment,
                    shipping_address=address,
                    currency=cart.currency,
                    now=now,
                )
                if wallet is not None:
                    payment.begin_attempt()
                    payment.complete(provider="wallet")
                    order.record_payment_received()
                placed.append((order, payment))

            succeeded = [order.vendor_id for order, _ in placed]
            promotion_ids = _contributing_promotions(quote, [str(v) for v in succeeded])
            promotion_repo = current_domain.repository_for(Promotion)
            for promotion_id in promotion_ids:
                promotion = promotion_repo.get(promotion_id)
                promotion.redeem(cart.customer_id, checkout_id)
                promotion_repo.add(promotion)

            if placed:
                item_ids = [line.line_id for vq in quote.vendors if vq.vendor_id in succeeded for line in vq.lines]
                cart.check_out_items(checkout_id, item_ids, promotion_ids, [order.id for order, _ in placed])
                reprice(cart, now=now)

            order_repo = current_domain.repository_for(Order)
            payment_repo = current_domain.repository_for(Payment)
            for order, payment in placed:
                order_repo.add(order)
                payment_repo.add(payment)
            if wallet is not None and placed:
                current_domain.repository_for(Wallet).add(wallet)
            cart_repo.add(cart)
        except Exception:
            release_reservations(reserved)
            raise

        for order, _ in placed:
            notify_parties(order, vendors[str(order.vendor_id)], "order_placed", checkout_id=checkout_id)

        logger.info(
            "Checkout completed",
            checkout_id=checkout_id,
            cart_id=str(cart.id),
            orders=len(placed),
            failures=len(failures),
        )
        return {
            "checkout_id": checkout_id,
            "orders": [
                {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "vendor_id": str(order.vendor_id),
                    "payment_id": str(payment.id),
                    "status": order.status,
                    "payment_status": order.payment_status,
                    "total": order.total,
                }
                for order, payment in placed
            ],
            "failures": failures,
        }


def checkout_lock_keys(command: Checkout) -> list[str]:
    cart = current_domain.repository_for(Cart).get(command.cart_id)
    keys = [cart_key(cart.id)]
    keys += [vendor_key(item.vendor_id) for item in (cart.items or [])]
    keys += [promotion_key(applied.promotion_id) for applied in (cart.discounts or [])]
    if command.payment_method == PaymentMethod.WALLET.value and cart.customer_id:
        keys.append(wallet_owner_key(cart.customer_id))
        wallet = find_wallet(cart.customer_id)
        if wallet is not None:
            keys.append(wallet_key(wallet.id))
    return keys


def dispatch_checkout(command: Checkout):
    """Run a checkout holding the cart, its vendors, its promotions and the wallet."""
    return dispatch_resolved(command, lambda: checkout_lock_keys(command))
