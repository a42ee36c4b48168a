import secrets
import time
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from servicehub.errors import BadRequestError
from servicehub.extensions import db
from servicehub.models import TransactionStatus, TransactionType, Wallet, WalletTransaction, WithdrawalMethod
from servicehub.money import CENT, parse_amount, to_money
from servicehub.pagination import paginate_query


def generate_transaction_reference(prefix="WTH"):
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class WalletService:
    """Provider wallets and their append-only transaction log.

    Balances only move through single ``UPDATE`` statements so concurrent
    webhooks or withdrawals never overwrite each other's arithmetic.
    ``pending_source`` is a callable returning the amount of paid, unfinished
    bookings for a provider; the booking module supplies it at composition time.
    """

    def __init__(
        self,
        pending_source,
        commission_rate=Decimal("0.10"),
        min_withdrawal=Decimal("1000"),
        max_withdrawal=Decimal("500000"),
        daily_limit=Decimal("1000000"),
        monthly_limit=Decimal("5000000"),
        currency="XAF",
    ):
        self.pending_source = pending_source
        self.commission_rate = Decimal(str(commission_rate))
        self.min_withdrawal = Decimal(str(min_withdrawal))
        self.max_withdrawal = Decimal(str(max_withdrawal))
        self.daily_limit = Decimal(str(daily_limit))
        self.monthly_limit = Decimal(str(monthly_limit))
        self.currency = currency

    @classmethod
    def from_config(cls, config, pending_source):
        return cls(
            pending_source=pending_source,
            commission_rate=config.get("COMMISSION_RATE", Decimal("0.10")),
            min_withdrawal=config.get("MIN_WITHDRAWAL_AMOUNT", Decimal("1000")),
            max_withdrawal=config.get("MAX_WITHDRAWAL_AMOUNT", Decimal("500000")),
            daily_limit=config.get("DAILY_WITHDRAWAL_LIMIT", Decimal("1000000")),
            monthly_limit=config.get("MONTHLY_WITHDRAWAL_LIMIT", Decimal("5000000")),
            currency=config.get("PAYMENT_CURRENCY", "XAF"),
        )

    def split_commission(self, gross_amount):
        gross = to_money(gross_amount)
        commission = (gross * self.commission_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        return gross - commission, commission

    def get_or_create(self, provider_id):
        wallet = Wallet.query.filter_by(provider_id=provider_id).first()
        if wallet:
            return wallet
        try:
            with db.session.begin_nested():
                wallet = Wallet(
                    provider_id=provider_id,
                    balance=Decimal("0"),
                    pending_balance=Decimal("0"),
                    total_earnings=Decimal("0"),
                    total_withdrawn=Decimal("0"),
                    currency=self.currency,
                )
                db.session.add(wallet)
        except IntegrityError:
            # Another request created it first.
            wallet = Wallet.query.filter_by(provider_id=provider_id).one()
        return wallet

    def process_earning(self, provider_id, booking_id, gross_amount):
        """Credit a booking's net amount once; returns False when it was already credited."""
        gross = to_money(gross_amount)
        net, commission = self.split_commission(gross)
        wallet = self.get_or_create(provider_id)
        now = datetime.now(timezone.utc)

        try:
            with db.session.begin_nested():
                db.session.add(
                    WalletTransaction(
                        provider_id=provider_id,
                        booking_id=booking_id,
                        type=TransactionType.EARNING,
                        amount=net,
                        currency=wallet.currency,
                        status=TransactionStatus.COMPLETED,
                        description="Earning from paid booking",
                        processed_at=now,
                    )
                )
        except IntegrityError:
            if not self._has_earning(provider_id, booking_id):
                raise
            current_app.logger.info("Earning for booking %s already recorded for provider %s", booking_id, provider_id)
            return False

        rate_pct = (self.commission_rate * 100).normalize()
        db.session.add(
            WalletTransaction(
                provider_id=provider_id,
                booking_id=booking_id,
                type=TransactionType.COMMISSION,
                amount=-commission,
                currency=wallet.currency,
                status=TransactionStatus.COMPLETED,
                description=f"Platform commission ({rate_pct:f}%)",
                processed_at=now,
            )
        )
        Wallet.query.filter(Wallet.id == wallet.id).update(
            {
                Wallet.balance: Wallet.balance + net,
                Wallet.total_earnings: Wallet.total_earnings + net,
            },
            synchronize_session=False,
        )
        Wallet.query.filter(Wallet.id == wallet.id, Wallet.pending_balance >= gross).update(
            {Wallet.pending_balance: Wallet.pending_balance - gross},
            synchronize_session=False,
        )
        db.session.expire(wallet)
        current_app.logger.info(
            "Credited %s (commission %s) to provider %s for booking %s", net, commission, provider_id, booking_id
        )
        return True

    def create_withdrawal(self, provider_id, amount, method, details=None, description=None):
        amount = parse_amount(amount)
        if amount < self.min_withdrawal:
            raise BadRequestError(f"Minimum withdrawal amount is {self.min_withdrawal:f} {self.currency}.")
        if method not in WithdrawalMethod.ALL:
            raise BadRequestError("Invalid withdrawal method.")
        if details is not None and not isinstance(details, dict):
            raise BadRequestError("Withdrawal details must be an object.")
        self._check_withdrawal_limits(provider_id, amount)

        wallet = self.get_or_create(provider_id)
        debited = Wallet.query.filter(Wallet.id == wallet.id, Wallet.balance >= amount).update(
            {
                Wallet.balance: Wallet.balance - amount,
                Wallet.total_withdrawn: Wallet.total_withdrawn + amount,
            },
            synchronize_session=False,
        )
        if debited != 1:
            db.session.commit()
            raise BadRequestError("Insufficient balance for withdrawal.")

        transaction = WalletTransaction(
            provider_id=provider_id,
            type=TransactionType.WITHDRAWAL,
            amount=amount,
            currency=wallet.currency,
            status=TransactionStatus.PENDING,
            description=(description or "").strip() or "Withdrawal request",
            withdrawal_method=method,
            withdrawal_details=details or {},
            transaction_reference=generate_transaction_reference(),
        )
        db.session.add(transaction)
        db.session.commit()
        current_app.logger.info("Withdrawal %s of %s requested by provider %s", transaction.transaction_reference, amount, provider_id)
        return transaction

    def _check_withdrawal_limits(self, provider_id, amount):
        if amount > self.max_withdrawal:
            raise BadRequestError(
                f"Maximum withdrawal amount is {self.max_withdrawal:f} {self.currency} per transaction."
            )
        day_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        if self._withdrawn_since(provider_id, day_start) + amount > self.daily_limit:
            raise BadRequestError(f"Daily withdrawal limit of {self.daily_limit:f} {self.currency} exceeded.")
        month_start = day_start.replace(day=1)
        if self._withdrawn_since(provider_id, month_start) + amount > self.monthly_limit:
            raise BadRequestError(f"Monthly withdrawal limit of {self.monthly_limit:f} {self.currency} exceeded.")

    @staticmethod
    def _withdrawn_since(provider_id, since):
        total = (
            db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
            .filter(WalletTransaction.provider_id == provider_id)
            .filter(WalletTransaction.type == TransactionType.WITHDRAWAL)
            .filter(WalletTransaction.status.in_((TransactionStatus.PENDING, TransactionStatus.COMPLETED)))
            .filter(WalletTransaction.created_at >= since)
            .scalar()
        )
        return Decimal(str(total))

    @staticmethod
    def _has_earning(provider_id, booking_id):
        return (
            WalletTransaction.query.filter_by(
                provider_id=provider_id, booking_id=booking_id, type=TransactionType.EARNING
            ).first()
            is not None
        )

    def recompute_pending_balance(self, provider_id):
        pending = to_money(self.pending_source(provider_id))
        Wallet.query.filter_by(provider_id=provider_id).update(
            {"pending_balance": pending}, synchronize_session=False
        )
        return pending

    def balance(self, provider_id):
        wallet = self.get_or_create(provider_id)
        self.recompute_pending_balance(provider_id)
        db.session.commit()
        return wallet

    def _history(self, provider_id, page, limit, types=None):
        query = WalletTransaction.query.filter(WalletTransaction.provider_id == provider_id)
        if types:
            query = query.filter(WalletTransaction.type.in_(types))
        query = query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        return paginate_query(query, page, limit)

    def earnings_history(self, provider_id, page=1, limit=10):
        return self._history(provider_id, page, limit, TransactionType.EARNINGS_VIEW)

    def transaction_history(self, provider_id, page=1, limit=10):
        return self._history(provider_id, page, limit)

    def withdrawal_history(self, provider_id, page=1, limit=10):
        return self._history(provider_id, page, limit, (TransactionType.WITHDRAWAL,))
