"""Domain events for the Product aggregate."""

from protean.fields import Float, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Product")
class ProductListed:
    __version__ = 1

    product_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    name = String(required=True)
    price = Float(required=True)


@marketplace.event(part_of="Product")
class ProductPriceChanged:
    """Carts pick up the new price on their next refresh; orders never do."""

    __version__ = 1

    product_id = Identifier(required=True)
    previous_price = Float(required=True)
    new_price = Float(required=True)


@marketplace.event(part_of="Product")
class ProductDeactivated:
    __version__ = 1

    product_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
