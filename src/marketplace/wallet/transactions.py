"""Wallet commands: opening, single ledger entries and transfers."""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.settings import get_settings
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.errors import NotAuthorized
from marketplace.wallet.wallet import TransactionType, Wallet

logger = structlog.get_logger(__name__)

# Entry types a wallet owner may post on their own; everything else is platform-only
OWNER_TRANSACTION_TYPES = frozenset({TransactionType.DEBIT, TransactionType.WITHDRAWAL})


@marketplace.command(part_of="Wallet")
class OpenWallet:
    """Return the user's wallet, opening one if there is none."""

    user_id = Identifier(required=True)


@marketplace.command(part_of="Wallet")
class RecordWalletTransaction:
    wallet_id = Identifier(required=True)
    transaction_type = String(choices=TransactionType, required=True)
    amount = Float(required=True)
    description = String(max_length=500)
    reference = String(max_length=255)
    expected_sequence = Integer(min_value=0)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Wallet")
class TransferFunds:
    source_wallet_id = Identifier(required=True)
    target_wallet_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.01)
    description = String(max_length=500)
    expected_sequence = Integer(min_value=0)  # Of the source wallet
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


def find_wallet(user_id) -> Wallet | None:
    repo = current_domain.repository_for(Wallet)
    matches = repo._dao.query.filter(user_id=str(user_id)).all().items
    return matches[0] if matches else None


def wallet_for_user(user_id) -> Wallet:
    """The user's wallet, opened on first use. The caller persists it."""
    return find_wallet(user_id) or Wallet.open(user_id=str(user_id), currency=get_settings().currency)


def authorize_wallet_entry(wallet: Wallet, actor: AuthContext, transaction_type: TransactionType) -> None:
    if actor.is_privileged:
        return
    if str(wallet.user_id) != actor.user_id:
        raise NotAuthorized("You can only use your own wallet", role=actor.role.value)
    if transaction_type not in OWNER_TRANSACTION_TYPES:
        raise NotAuthorized(
            f"Only the platform can post {transaction_type.value} entries",
            role=actor.role.value,
        )


@marketplace.command_handler(part_of=Wallet)
class WalletHandler:
    @handle(OpenWallet)
    def open_wallet(self, command):
        existing = find_wallet(command.user_id)
        if existing:
            return str(existing.id)
        wallet = Wallet.open(user_id=command.user_id, currency=get_settings().currency)
        current_domain.repository_for(Wallet).add(wallet)
        logger.info("Wallet opened", wallet_id=str(wallet.id), user_id=str(command.user_id))
        return str(wallet.id)

    @handle(RecordWalletTransaction)
    def record_transaction(self, command):
        repo = current_domain.repository_for(Wallet)
        wallet = repo.get(command.wallet_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)
        transaction_type = TransactionType(command.transaction_type)

        authorize_wallet_entry(wallet, actor, transaction_type)
        entry = wallet.record(
            transaction_type,
            command.amount,
            description=command.description,
            reference=command.reference,
            actor_id=actor.user_id,
            expected_sequence=command.expected_sequence,
        )
        repo.add(wallet)

        logger.info(
            "Wallet transaction recorded",
            wallet_id=str(wallet.id),
            transaction_type=transaction_type.value,
            amount=entry.amount,
            sequence=entry.sequence,
        )
        return str(entry.id)

    @handle(TransferFunds)
    def transfer_funds(self, command):
        if str(command.source_wallet_id) == str(command.target_wallet_id):
            raise ValidationError({"target_wallet_id": ["Cannot transfer to the same wallet"]})

        repo = current_domain.repository_for(Wallet)
        source = repo.get(command.source_wallet_id)
        target = repo.get(command.target_wallet_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)
        authorize_wallet_entry(source, actor, TransactionType.DEBIT)

        description = command.description or "Wallet transfer"
        outgoing = source.record(
            TransactionType.DEBIT,
            command.amount,
            description=description,
            reference=f"transfer:{target.id}",
            actor_id=actor.user_id,
            expected_sequence=command.expected_sequence,
        )
        target.record(
            TransactionType.CREDIT,
            command.amount,
            description=description,
            reference=f"transfer:{source.id}",
            actor_id=actor.user_id,
        )
        repo.add(source)
        repo.add(target)

        logger.info(
            "Wallet transfer completed",
            source_wallet_id=str(source.id),
            target_wallet_id=str(target.id),
            amount=command.amount,
        )
        return str(outgoing.id)
