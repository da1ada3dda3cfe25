"""Product aggregate (CQRS): what a vendor sells and at what price.

Stock levels live behind the StockReservation port, not on the product.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, String

from marketplace.catalogue.events import ProductDeactivated, ProductListed, ProductPriceChanged
from marketplace.domain import marketplace


@marketplace.aggregate
class Product:
    vendor_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    is_active = Boolean(default=True)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def list_for_sale(cls, vendor_id, name, price):
        now = datetime.now(UTC)
        product = cls(
            vendor_id=vendor_id,
            name=name,
            price=price,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        product.raise_(
            ProductListed(
                product_id=str(product.id),
                vendor_id=str(vendor_id),
                name=name,
                price=price,
            )
        )
        return product

    def change_price(self, new_price):
        if new_price < 0:
            raise ValidationError({"price": ["Price cannot be negative"]})
        previous = self.price
        self.price = new_price
        self.updated_at = datetime.now(UTC)
        self.raise_(
            ProductPriceChanged(
                product_id=str(self.id),
                previous_price=previous,
                new_price=new_price,
            )
        )

    def deactivate(self):
        if not self.is_active:
            raise ValidationError({"is_active": ["Product is already inactive"]})
        self.is_active = False
        self.updated_at = datetime.now(UTC)
        self.raise_(ProductDeactivated(product_id=str(self.id), vendor_id=str(self.vendor_id)))
