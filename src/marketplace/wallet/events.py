"""Domain events for the Wallet aggregate."""

from protean.fields import Float, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Wallet")
class WalletOpened:
    __version__ = 1

    wallet_id = Identifier(required=True)
    user_id = Identifier(required=True)
    currency = String(required=True)


@marketplace.event(part_of="Wallet")
class WalletTransactionRecorded:
    """One ledger entry was appended and the balance moved by ``amount``."""

    __version__ = 1

    wallet_id = Identifier(required=True)
    transaction_id = Identifier(required=True)
    transaction_type = String(required=True)
    amount = Float(required=True)  # Signed
    balance_after = Float(required=True)
    sequence = Integer(required=True)
    reference = String()
