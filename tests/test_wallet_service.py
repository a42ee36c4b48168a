from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from servicehub.errors import BadRequestError
from servicehub.extensions import db
from servicehub.models import (
    BookingPaymentStatus,
    BookingStatus,
    TransactionStatus,
    TransactionType,
    UserRole,
    Wallet,
    WalletTransaction,
    WithdrawalMethod,
)


def _fund(wallets, provider, booking, amount="25000"):
    assert wallets.process_earning(provider.id, booking.id, Decimal(amount))
    db.session.commit()
    return Wallet.query.filter_by(provider_id=provider.id).one()


def test_split_commission_rounds_to_cents(wallets):
    assert wallets.split_commission(Decimal("25000")) == (Decimal("22500.00"), Decimal("2500.00"))
    assert wallets.split_commission("333.33") == (Decimal("300.00"), Decimal("33.33"))


def test_get_or_create_returns_same_wallet(wallets, provider):
    first = wallets.get_or_create(provider.id)
    db.session.commit()
    second = wallets.get_or_create(provider.id)
    assert first.id == second.id
    assert first.balance == Decimal("0")
    assert first.currency == "XAF"


def test_process_earning_is_idempotent_per_booking(wallets, provider, booking):
    wallet = _fund(wallets, provider, booking)

    assert wallets.process_earning(provider.id, booking.id, Decimal("25000")) is False
    db.session.commit()

    assert wallet.balance == Decimal("22500.00")
    assert wallet.total_earnings == Decimal("22500.00")
    assert WalletTransaction.query.filter_by(type=TransactionType.EARNING).count() == 1
    assert WalletTransaction.query.filter_by(type=TransactionType.COMMISSION).count() == 1


def test_process_earning_releases_pending_balance(wallets, provider, booking):
    wallet = wallets.get_or_create(provider.id)
    wallet.pending_balance = Decimal("25000")
    db.session.commit()

    _fund(wallets, provider, booking)

    assert wallet.pending_balance == Decimal("0.00")


def test_process_earning_never_drives_pending_negative(wallets, provider, booking):
    wallet = _fund(wallets, provider, booking)
    assert wallet.pending_balance == Decimal("0.00")


def test_earnings_for_different_bookings_accumulate(wallets, provider, make_booking):
    first, second = make_booking(), make_booking(amount="10000")
    _fund(wallets, provider, first)
    wallet = _fund(wallets, provider, second, amount="10000")
    assert wallet.balance == Decimal("31500.00")


def test_withdrawal_debits_balance(wallets, provider, booking):
    wallet = _fund(wallets, provider, booking)

    tx = wallets.create_withdrawal(
        provider.id, "5000", WithdrawalMethod.MOBILE_MONEY, details={"msisdn": "670000001"}
    )

    assert tx.type == TransactionType.WITHDRAWAL
    assert tx.status == TransactionStatus.PENDING
    assert tx.amount == Decimal("5000.00")
    assert tx.withdrawal_details == {"msisdn": "670000001"}
    assert tx.transaction_reference.startswith("WTH-")
    assert wallet.balance == Decimal("17500.00")
    assert wallet.total_withdrawn == Decimal("5000.00")


def test_withdrawal_over_balance_is_rejected(wallets, provider, booking):
    wallet = _fund(wallets, provider, booking)

    with pytest.raises(BadRequestError, match="Insufficient balance"):
        wallets.create_withdrawal(provider.id, "30000", WithdrawalMethod.BANK_TRANSFER)

    assert wallet.balance == Decimal("22500.00")
    assert wallet.total_withdrawn == Decimal("0.00")
    assert WalletTransaction.query.filter_by(type=TransactionType.WITHDRAWAL).count() == 0


@pytest.mark.parametrize(
    "amount, method, details, message",
    [
        ("500", WithdrawalMethod.BANK_TRANSFER, None, "Minimum withdrawal"),
        ("5000", "cheque", None, "Invalid withdrawal method"),
        ("5000", WithdrawalMethod.PAYPAL, "me@example.cm", "must be an object"),
        ("-5", WithdrawalMethod.PAYPAL, None, "greater than zero"),
    ],
)
def test_withdrawal_validation(wallets, provider, amount, method, details, message):
    with pytest.raises(BadRequestError, match=message):
        wallets.create_withdrawal(provider.id, amount, method, details=details)


def test_recompute_pending_balance_counts_paid_unfinished_bookings(wallets, provider, make_booking):
    make_booking(amount="25000", payment_status=BookingPaymentStatus.PAID)
    make_booking(amount="10000", status=BookingStatus.IN_PROGRESS, payment_status=BookingPaymentStatus.PAID)
    make_booking(amount="7000", status=BookingStatus.COMPLETED, payment_status=BookingPaymentStatus.PAID)
    make_booking(amount="4000")

    wallet = wallets.balance(provider.id)

    assert wallet.pending_balance == Decimal("35000.00")


def test_recompute_pending_balance_overwrites_stale_value(wallets, provider):
    wallet = wallets.get_or_create(provider.id)
    wallet.pending_balance = Decimal("99999")
    db.session.commit()

    assert wallets.recompute_pending_balance(provider.id) == Decimal("0.00")
    db.session.commit()
    assert wallet.pending_balance == Decimal("0.00")


def test_history_views(wallets, provider, booking):
    _fund(wallets, provider, booking)
    wallets.create_withdrawal(provider.id, "2000", WithdrawalMethod.MOBILE_MONEY)

    earnings, earnings_page = wallets.earnings_history(provider.id)
    withdrawals, _ = wallets.withdrawal_history(provider.id)
    everything, _ = wallets.transaction_history(provider.id, limit=2)

    assert {t.type for t in earnings} == {TransactionType.EARNING, TransactionType.COMMISSION}
    assert earnings_page["total"] == 2
    assert [t.type for t in withdrawals] == [TransactionType.WITHDRAWAL]
    assert len(everything) == 2


def _rich_wallet(wallets, provider, balance="10000000"):
    wallet = wallets.get_or_create(provider.id)
    wallet.balance = Decimal(balance)
    db.session.commit()
    return wallet


def test_withdrawal_above_per_transaction_maximum_is_rejected(wallets, provider):
    wallet = _rich_wallet(wallets, provider)

    with pytest.raises(BadRequestError, match="Maximum withdrawal amount is 500000 XAF"):
        wallets.create_withdrawal(provider.id, "500000.01", WithdrawalMethod.BANK_TRANSFER)

    assert wallet.balance == Decimal("10000000.00")
    assert wallets.create_withdrawal(provider.id, "500000", WithdrawalMethod.BANK_TRANSFER).amount == Decimal(
        "500000.00"
    )


def test_daily_withdrawal_limit_counts_todays_withdrawals(wallets, provider, monkeypatch):
    monkeypatch.setattr(wallets, "daily_limit", Decimal("8000"))
    wallet = _rich_wallet(wallets, provider)

    wallets.create_withdrawal(provider.id, "5000", WithdrawalMethod.MOBILE_MONEY)
    wallets.create_withdrawal(provider.id, "3000", WithdrawalMethod.MOBILE_MONEY)
    with pytest.raises(BadRequestError, match="Daily withdrawal limit of 8000 XAF exceeded"):
        wallets.create_withdrawal(provider.id, "1000", WithdrawalMethod.MOBILE_MONEY)

    assert wallet.balance == Decimal("9992000.00")
    assert WalletTransaction.query.filter_by(type=TransactionType.WITHDRAWAL).count() == 2


def test_monthly_withdrawal_limit_ignores_older_months(wallets, provider, monkeypatch):
    monkeypatch.setattr(wallets, "monthly_limit", Decimal("8000"))
    _rich_wallet(wallets, provider)

    old = wallets.create_withdrawal(provider.id, "5000", WithdrawalMethod.MOBILE_MONEY)
    old.created_at = datetime.now(timezone.utc) - timedelta(days=40)
    db.session.commit()

    wallets.create_withdrawal(provider.id, "5000", WithdrawalMethod.MOBILE_MONEY)
    with pytest.raises(BadRequestError, match="Monthly withdrawal limit of 8000 XAF exceeded"):
        wallets.create_withdrawal(provider.id, "5000", WithdrawalMethod.MOBILE_MONEY)


def test_withdrawal_limits_are_per_provider(wallets, provider, make_user, monkeypatch):
    monkeypatch.setattr(wallets, "daily_limit", Decimal("5000"))
    other = make_user(UserRole.PROVIDER)
    _rich_wallet(wallets, provider)
    _rich_wallet(wallets, other)

    wallets.create_withdrawal(provider.id, "5000", WithdrawalMethod.MOBILE_MONEY)
    assert wallets.create_withdrawal(other.id, "5000", WithdrawalMethod.MOBILE_MONEY).provider_id == other.id


def test_process_earning_for_missing_booking_raises(wallets, provider):
    with pytest.raises(IntegrityError):
        wallets.process_earning(provider.id, 9999, Decimal("25000"))
    db.session.rollback()

    assert WalletTransaction.query.count() == 0
