"""Order factory: turn one vendor's share of a priced cart into an Order and its Payment.

Everything here works from the ``VendorQuote`` the pricing engine produced,
so the order's money fields are a snapshot of what the customer saw at
checkout. Nothing is persisted; the checkout handler decides what to keep.
"""

from dataclasses import dataclass

import structlog

from marketplace.cart.pricing import VendorQuote
from marketplace.cart.snapshots import VendorTerms
from marketplace.checkout.numbering import next_order_number
from marketplace.inventory import get_stock
from marketplace.order.order import Order, OrderLine
from marketplace.payment.payment import Payment
from marketplace.settlement.earnings import EarningsSplit, delivery_earnings_for, split_earnings
from marketplace.shared.choices import FulfillmentType
from marketplace.shared.errors import InsufficientStock
from marketplace.shared.money import as_float

logger = structlog.get_logger(__name__)


@dataclass
class Reservation:
    """Stock taken for one vendor order, so it can be handed back."""

    product_id: str
    quantity: int


def reserve_stock(quote: VendorQuote) -> list[Reservation]:
    """Reserve every line of ``quote`` or none of them.

    Raises:
        InsufficientStock: a line could not be reserved. Anything already
            taken for this vendor has been released.
    """
    stock = get_stock()
    taken: list[Reservation] = []
    for line in quote.lines:
        if not stock.reserve(line.product_id, line.quantity):
            release_reservations(taken)
            raise InsufficientStock(
                f"Not enough stock for {line.name or line.product_id}",
                product_id=line.product_id,
                requested=line.quantity,
                available=stock.available(line.product_id),
            )
        taken.append(Reservation(product_id=line.product_id, quantity=line.quantity))
    return taken


def release_reservations(reservations: list[Reservation]) -> None:
    stock = get_stock()
    for reservation in reservations:
        stock.release(reservation.product_id, reservation.quantity)


def order_lines(quote: VendorQuote) -> list[OrderLine]:
    return [
        OrderLine(
            product_id=line.product_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=as_float(line.unit_price),
            discount=as_float(line.discount),
            tax=as_float(line.tax),
            line_total=as_float(line.line_total),
        )
        for line in quote.lines
    ]


def order_amounts(quote: VendorQuote) -> dict:
    """The order's money fields: vendor figures plus its share of cart-wide adjustments."""
    return {
        "subtotal": as_float(quote.subtotal),
        "tax": as_float(quote.tax),
        "delivery_fee": as_float(quote.delivery_fee),
        "packaging_fee": as_float(quote.packaging_fee),
        "service_fee": as_float(quote.service_fee_share),
        "discount": as_float(quote.order_discount),
        "total": as_float(quote.order_total),
    }


def order_earnings(quote: VendorQuote, terms: VendorTerms, fulfillment: FulfillmentType) -> EarningsSplit:
    delivery = delivery_earnings_for(terms, fulfillment, quote.delivery_fee)
    return split_earnings(quote.order_total, terms.commission_rate, delivery)


def build_order(
    *,
    vendor,
    quote: VendorQuote,
    terms: VendorTerms,
    checkout_id: str,
    customer_id,
    payment_method: str,
    fulfillment: FulfillmentType,
    shipping_address=None,
    currency: str = "USD",
    now=None,
) -> tuple[Order, Payment]:
    """Create the vendor order and its pending payment, linked to each other."""
    split = order_earnings(quote, terms, fulfillment)
    order = Order.place(
        order_number=next_order_number(vendor, now),
        checkout_id=checkout_id,
        customer_id=customer_id,
        vendor_id=quote.vendor_id,
        payment_method=payment_method,
        fulfillment_type=fulfillment.value,
        lines=order_lines(quote),
        amounts=order_amounts(quote),
        earnings={
            "commission_amount": as_float(split.commission_amount),
            "vendor_earnings": as_float(split.vendor_earnings),
            "platform_earnings": as_float(split.platform_earnings),
            "delivery_earnings": as_float(split.delivery_earnings),
        },
        commission_rate=float(terms.commission_rate),
        shipping_address=shipping_address if fulfillment == FulfillmentType.DELIVERY else None,
        currency=currency,
    )
    payment = Payment.create(
        order_id=str(order.id),
        checkout_id=checkout_id,
        customer_id=customer_id,
        vendor_id=quote.vendor_id,
        amount=order.total,
        payment_method=payment_method,
        platform_fee=as_float(split.commission_amount),
        vendor_amount=as_float(split.vendor_earnings),
        currency=currency,
    )
    order.payment_id = str(payment.id)

    logger.info(
        "Vendor order built",
        order_id=str(order.id),
        order_number=order.order_number,
        vendor_id=quote.vendor_id,
        total=order.total,
        commission_amount=order.commission_amount,
    )
    return order, payment
