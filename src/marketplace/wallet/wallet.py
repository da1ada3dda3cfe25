"""Wallet aggregate (CQRS): a user's platform balance and its ledger.

Every mutation appends exactly one ``WalletTransaction`` and bumps the
sequence. The balance is never set directly; it is always the running sum of
the ledger and never drops below zero.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.settings import get_settings
from marketplace.shared.errors import ConcurrencyConflict, InsufficientFunds, InvalidWalletAmount
from marketplace.shared.money import EPSILON, ZERO, as_float, quantize, to_decimal
from marketplace.wallet.events import WalletOpened, WalletTransactionRecorded


class TransactionType(Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"
    REFUND = "Refund"
    ADJUSTMENT = "Adjustment"
    WITHDRAWAL = "Withdrawal"
    BONUS = "Bonus"


CREDIT_TYPES = frozenset({TransactionType.CREDIT, TransactionType.REFUND, TransactionType.BONUS})
DEBIT_TYPES = frozenset({TransactionType.DEBIT, TransactionType.WITHDRAWAL})


@marketplace.entity(part_of="Wallet")
class WalletTransaction:
    transaction_type = String(choices=TransactionType, required=True)
    amount = Float(required=True)  # Signed: negative for debits and withdrawals
    balance_after = Float(required=True, min_value=0.0)
    description = String(max_length=500)
    reference = String(max_length=255)
    actor_id = String(max_length=255)
    sequence = Integer(required=True, min_value=1)
    created_at = DateTime(required=True)


@marketplace.aggregate
class Wallet:
    user_id = Identifier(required=True, unique=True)
    balance = Float(default=0.0)
    sequence = Integer(default=0, min_value=0)
    currency = String(max_length=3, default="USD")
    transactions = HasMany(WalletTransaction)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def balance_must_not_be_negative(self):
        if (self.balance or 0) < 0:
            raise ValidationError({"balance": ["Wallet balance cannot be negative"]})

    @invariant.post
    def balance_must_match_ledger(self):
        ledger = sum(t.amount for t in (self.transactions or []))
        if abs(ledger - (self.balance or 0)) > EPSILON:
            raise ValidationError({"balance": ["Wallet balance does not match its ledger"]})

    @classmethod
    def open(cls, user_id, currency="USD"):
        now = datetime.now(UTC)
        wallet = cls(user_id=user_id, balance=0.0, sequence=0, currency=currency, created_at=now, updated_at=now)
        wallet.raise_(WalletOpened(wallet_id=str(wallet.id), user_id=str(user_id), currency=currency))
        return wallet

    @property
    def balance_amount(self) -> Decimal:
        return to_decimal(self.balance)

    def _signed_amount(self, transaction_type: TransactionType, amount: Decimal) -> Decimal:
        if transaction_type == TransactionType.ADJUSTMENT:
            if amount == ZERO:
                raise InvalidWalletAmount("Adjustment amount cannot be zero")
            return amount
        if amount <= ZERO:
            raise InvalidWalletAmount("Amount must be positive")
        return -amount if transaction_type in DEBIT_TYPES else amount

    def _check_withdrawal_limits(self, amount: Decimal) -> None:
        settings = get_settings()
        if amount < settings.wallet_min_withdrawal or amount > settings.wallet_max_withdrawal:
            raise InvalidWalletAmount(
                f"Withdrawals must be between {settings.wallet_min_withdrawal} and {settings.wallet_max_withdrawal}",
                minimum=str(settings.wallet_min_withdrawal),
                maximum=str(settings.wallet_max_withdrawal),
            )

    def record(
        self,
        transaction_type: TransactionType,
        amount,
        description: str | None = None,
        reference: str | None = None,
        actor_id: str | None = None,
        expected_sequence: int | None = None,
    ) -> WalletTransaction:
        """Append one ledger entry and move the balance.

        Raises:
            ConcurrencyConflict: ``expected_sequence`` is stale.
            InvalidWalletAmount: non-positive amount, or a withdrawal outside limits.
            InsufficientFunds: the entry would take the balance below zero.
        """
        if expected_sequence is not None and expected_sequence != (self.sequence or 0):
            raise ConcurrencyConflict(
                "Wallet changed since it was read",
                expected=expected_sequence,
                actual=self.sequence or 0,
            )

        value = to_decimal(amount)
        signed = self._signed_amount(transaction_type, value)
        if transaction_type == TransactionType.WITHDRAWAL:
            self._check_withdrawal_limits(value)

        new_balance = quantize(self.balance_amount + signed)
        if new_balance < ZERO:
            raise InsufficientFunds(
                "Insufficient wallet balance",
                balance=str(self.balance_amount),
                requested=str(abs(signed)),
            )

        now = datetime.now(UTC)
        next_sequence = (self.sequence or 0) + 1
        entry = WalletTransaction(
            transaction_type=transaction_type.value,
            amount=as_float(signed),
            balance_after=as_float(new_balance),
            description=description,
            reference=reference,
            actor_id=actor_id,
            sequence=next_sequence,
            created_at=now,
        )
        with atomic_change(self):
            self.add_transactions(entry)
            self.balance = as_float(new_balance)
            self.sequence = next_sequence
            self.updated_at = now

        self.raise_(
            WalletTransactionRecorded(
                wallet_id=str(self.id),
                transaction_id=str(entry.id),
                transaction_type=transaction_type.value,
                amount=entry.amount,
                balance_after=entry.balance_after,
                sequence=next_sequence,
                reference=reference,
            )
        )
        return entry

    def credit(self, amount, description=None, reference=None, actor_id=None):
        return self.record(TransactionType.CREDIT, amount, description, reference, actor_id)

    def debit(self, amount, description=None, reference=None, actor_id=None):
        return self.record(TransactionType.DEBIT, amount, description, reference, actor_id)

    def refund(self, amount, description=None, reference=None, actor_id=None):
        return self.record(TransactionType.REFUND, amount, description, reference, actor_id)
