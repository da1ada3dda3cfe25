"""Enumerations shared across carts, orders, vendors and payments."""

from enum import Enum


class PaymentMethod(Enum):
    CASH = "Cash"
    CARD = "Card"
    PAYPAL = "Paypal"
    BANK_TRANSFER = "Bank_Transfer"
    WALLET = "Wallet"


class FulfillmentType(Enum):
    DELIVERY = "Delivery"
    PICKUP = "Pickup"


class DeliveryMode(Enum):
    PLATFORM = "Platform"  # platform agents deliver and earn the delivery fee
    OWN = "Own"  # vendor delivers with its own staff
