"""Tests for the Wallet aggregate and its append-only ledger."""

from decimal import Decimal

import pytest
from marketplace.settings import override_settings
from marketplace.shared.errors import ConcurrencyConflict, InsufficientFunds, InvalidWalletAmount
from marketplace.wallet.events import WalletTransactionRecorded
from marketplace.wallet.wallet import TransactionType, Wallet


def _wallet(balance=None):
    wallet = Wallet.open("cust-001")
    if balance:
        wallet.credit(balance, "Top up")
    return wallet


class TestCreditsAndDebits:
    def test_new_wallet_is_empty(self):
        wallet = _wallet()
        assert wallet.balance == 0.0
        assert wallet.sequence == 0
        assert len(wallet.transactions) == 0

    def test_credit(self):
        wallet = _wallet()
        entry = wallet.credit(50.0, "Top up", "topup-1", "admin-1")
        assert wallet.balance == 50.0
        assert entry.amount == 50.0
        assert entry.balance_after == 50.0
        assert entry.sequence == 1
        assert isinstance(wallet._events[-1], WalletTransactionRecorded)

    def test_debit_is_stored_negative(self):
        wallet = _wallet(50.0)
        entry = wallet.debit(20.0, "Order payment", "order-1")
        assert entry.amount == -20.0
        assert wallet.balance == 30.0
        assert wallet.balance_amount == Decimal("30.00")

    def test_refund_and_bonus_are_credits(self):
        wallet = _wallet()
        wallet.refund(5.0, "Refund")
        wallet.record(TransactionType.BONUS, 2.5, "Welcome bonus")
        assert wallet.balance == 7.5

    def test_debit_cannot_overdraw(self):
        wallet = _wallet(10.0)
        with pytest.raises(InsufficientFunds) as exc:
            wallet.debit(10.01)
        assert exc.value.details["balance"] == "10.00"
        assert wallet.balance == 10.0
        assert len(wallet.transactions) == 1

    def test_debit_of_whole_balance(self):
        wallet = _wallet(10.0)
        wallet.debit(10.0)
        assert wallet.balance == 0.0

    def test_amount_must_be_positive(self):
        with pytest.raises(InvalidWalletAmount):
            _wallet().credit(0)
        with pytest.raises(InvalidWalletAmount):
            _wallet().credit(-5.0)


class TestAdjustments:
    def test_negative_adjustment(self):
        wallet = _wallet(20.0)
        entry = wallet.record(TransactionType.ADJUSTMENT, -5.0, "Correction")
        assert entry.amount == -5.0
        assert wallet.balance == 15.0

    def test_zero_adjustment_is_rejected(self):
        with pytest.raises(InvalidWalletAmount):
            _wallet(20.0).record(TransactionType.ADJUSTMENT, 0, "Nothing")

    def test_adjustment_cannot_go_negative(self):
        with pytest.raises(InsufficientFunds):
            _wallet(5.0).record(TransactionType.ADJUSTMENT, -6.0, "Too much")


class TestWithdrawals:
    def test_withdrawal_within_limits(self):
        wallet = _wallet(100.0)
        wallet.record(TransactionType.WITHDRAWAL, 50.0, "Payout")
        assert wallet.balance == 50.0

    def test_withdrawal_below_minimum(self):
        with pytest.raises(InvalidWalletAmount) as exc:
            _wallet(100.0).record(TransactionType.WITHDRAWAL, 5.0)
        assert exc.value.details["minimum"] == "10"

    def test_withdrawal_above_maximum(self):
        with pytest.raises(InvalidWalletAmount):
            _wallet(2000.0).record(TransactionType.WITHDRAWAL, 1500.0)

    def test_limits_come_from_settings(self):
        override_settings(wallet_min_withdrawal=Decimal("1"))
        wallet = _wallet(100.0)
        wallet.record(TransactionType.WITHDRAWAL, 5.0)
        assert wallet.balance == 95.0


class TestSequence:
    def test_every_entry_bumps_the_sequence(self):
        wallet = _wallet(10.0)
        wallet.credit(5.0)
        wallet.debit(3.0)
        assert wallet.sequence == 3
        assert [t.sequence for t in wallet.transactions] == [1, 2, 3]

    def test_expected_sequence_matches(self):
        wallet = _wallet(10.0)
        wallet.record(TransactionType.CREDIT, 5.0, expected_sequence=1)
        assert wallet.sequence == 2

    def test_stale_sequence_is_rejected(self):
        wallet = _wallet(10.0)
        with pytest.raises(ConcurrencyConflict) as exc:
            wallet.record(TransactionType.CREDIT, 5.0, expected_sequence=0)
        assert exc.value.details == {"expected": 0, "actual": 1}

    def test_balance_is_the_sum_of_the_ledger(self):
        wallet = _wallet(40.0)
        wallet.debit(12.5)
        wallet.record(TransactionType.ADJUSTMENT, 2.25)
        wallet.refund(1.0)
        assert sum(t.amount for t in wallet.transactions) == pytest.approx(wallet.balance)
        assert wallet.transactions[-1].balance_after == wallet.balance
