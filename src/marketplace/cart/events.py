"""Domain events for the Cart aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from marketplace.domain import marketplace


@marketplace.event(part_of="Cart")
class CartItemAdded:
    """A product was added to the cart (or its quantity topped up)."""

    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    quantity = Integer(required=True)
    unit_price = Float(required=True)


@marketplace.event(part_of="Cart")
class CartQuantityUpdated:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@marketplace.event(part_of="Cart")
class CartItemRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


@marketplace.event(part_of="Cart")
class CartItemsDropped:
    """Items referencing an inactive product or vendor were cleaned out."""

    __version__ = 1

    cart_id = Identifier(required=True)
    item_ids = Text(required=True)  # JSON list
    reason = String(required=True)


@marketplace.event(part_of="Cart")
class CartDiscountApplied:
    __version__ = 1

    cart_id = Identifier(required=True)
    promotion_id = Identifier(required=True)
    code = String()
    scope = String(required=True)
    vendor_id = Identifier()
    amount = Float(required=True)


@marketplace.event(part_of="Cart")
class CartDiscountRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    promotion_id = Identifier(required=True)
    code = String()
    reason = String()


@marketplace.event(part_of="Cart")
class CartCleared:
    __version__ = 1

    cart_id = Identifier(required=True)


@marketplace.event(part_of="Cart")
class CartsMerged:
    """A guest cart's items were merged into a registered customer's cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    source_cart_id = Identifier(required=True)
    items_merged_count = Integer(required=True)


@marketplace.event(part_of="Cart")
class CartCheckedOut:
    """Items for the vendors that produced orders left the cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    checkout_id = Identifier(required=True)
    order_ids = Text(required=True)  # JSON list
    remaining_items = Integer(required=True)


@marketplace.event(part_of="Cart")
class CartAbandoned:
    __version__ = 1

    cart_id = Identifier(required=True)
    abandoned_at = DateTime(required=True)
