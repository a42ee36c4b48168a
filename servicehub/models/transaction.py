from servicehub.extensions import db
from servicehub.models.base import Money, PKType, TimestampMixin


class TransactionType:
    EARNING = "earning"
    COMMISSION = "commission"
    WITHDRAWAL = "withdrawal"

    EARNINGS_VIEW = (EARNING, COMMISSION)


class TransactionStatus:
    PENDING = "pending"
    COMPLETED = "completed"


class WithdrawalMethod:
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    PAYPAL = "paypal"

    ALL = (BANK_TRANSFER, MOBILE_MONEY, PAYPAL)


_EARNING_SQL = db.text("type = 'earning'")


class WalletTransaction(TimestampMixin, db.Model):
    """Append-only ledger row; rows are never updated once written."""

    __tablename__ = "wallet_transactions"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    provider_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)

    type = db.Column(db.String(24), nullable=False)
    amount = db.Column(Money, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="XAF")
    status = db.Column(db.String(24), nullable=False, default=TransactionStatus.PENDING)
    description = db.Column(db.String(255), nullable=True)

    withdrawal_method = db.Column(db.String(24), nullable=True)
    withdrawal_details = db.Column(db.JSON, nullable=True)
    transaction_reference = db.Column(db.String(40), nullable=True, unique=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.Index(
            "uq_wallet_transactions_earning_per_booking",
            "provider_id",
            "booking_id",
            unique=True,
            sqlite_where=_EARNING_SQL,
            postgresql_where=_EARNING_SQL,
        ),
        db.Index("ix_wallet_transactions_provider_type", "provider_id", "type"),
        db.Index("ix_wallet_transactions_provider_created", "provider_id", "created_at"),
    )
