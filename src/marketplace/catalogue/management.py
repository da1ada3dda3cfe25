"""Product listing, pricing and stock commands."""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.catalogue.product import Product
from marketplace.domain import marketplace
from marketplace.inventory import get_stock
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Product")
class ListProduct:
    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    initial_stock = Integer(default=0, min_value=0)


@marketplace.command(part_of="Product")
class ChangeProductPrice:
    product_id = Identifier(required=True)
    new_price = Float(required=True, min_value=0.0)


@marketplace.command(part_of="Product")
class DeactivateProduct:
    product_id = Identifier(required=True)


@marketplace.command(part_of="Product")
class SetStockLevel:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=0)


@marketplace.command_handler(part_of=Product)
class ProductHandler:
    @handle(ListProduct)
    def list_product(self, command):
        vendor = current_domain.repository_for(Vendor).get(command.vendor_id)
        if not vendor.is_active:
            raise ValidationError({"vendor_id": ["Inactive vendors cannot list products"]})

        product = Product.list_for_sale(vendor_id=command.vendor_id, name=command.name, price=command.price)
        current_domain.repository_for(Product).add(product)
        get_stock().set_level(str(product.id), command.initial_stock)
        logger.info("Product listed", product_id=str(product.id), vendor_id=str(command.vendor_id))
        return str(product.id)

    @handle(ChangeProductPrice)
    def change_product_price(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.change_price(command.new_price)
        repo.add(product)

    @handle(DeactivateProduct)
    def deactivate_product(self, command):
        repo = current_domain.repository_for(Product)
        product = repo.get(command.product_id)
        product.deactivate()
        repo.add(product)

    @handle(SetStockLevel)
    def set_stock_level(self, command):
        # Raises ObjectNotFoundError for unknown products
        current_domain.repository_for(Product).get(command.product_id)
        get_stock().set_level(str(command.product_id), command.quantity)
