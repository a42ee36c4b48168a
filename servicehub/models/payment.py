from servicehub.extensions import db
from servicehub.models.base import Money, PKType, TimestampMixin


class PaymentRail:
    MTN_MONEY = "mtn_money"
    ORANGE_MONEY = "orange_money"

    ALL = (MTN_MONEY, ORANGE_MONEY)


class PaymentStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    IN_FLIGHT = (PENDING, PROCESSING)
    TERMINAL = (SUCCESSFUL, FAILED, CANCELLED, EXPIRED)
    # Terminal outcomes that the retention cleanup may delete.
    DISCARDABLE = (FAILED, CANCELLED, EXPIRED)
    ALL = IN_FLIGHT + TERMINAL


class PaymentType:
    BOOKING_PAYMENT = "booking_payment"


_IN_FLIGHT_SQL = db.text("status IN ('pending', 'processing')")


class Payment(TimestampMixin, db.Model):
    __tablename__ = "payments"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    payer_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = db.Column(Money, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="XAF")
    provider = db.Column(db.String(24), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False, default=PaymentStatus.PENDING, index=True)
    payment_type = db.Column(db.String(32), nullable=False, default=PaymentType.BOOKING_PAYMENT)

    phone_number = db.Column(db.String(16), nullable=False)
    account_name = db.Column(db.String(120), nullable=True)
    country_code = db.Column(db.String(4), nullable=False, default="CM")

    payment_reference = db.Column(db.String(40), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=True)
    provider_transaction_id = db.Column(db.String(64), nullable=True, index=True)
    provider_metadata = db.Column(db.JSON, nullable=False, default=dict)

    failure_reason = db.Column(db.String(255), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    webhook_received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    booking = db.relationship("Booking", back_populates="payments")
    payer = db.relationship("User", foreign_keys=[payer_id])
    receiver = db.relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (
        db.Index(
            "uq_payments_booking_in_flight",
            "booking_id",
            unique=True,
            sqlite_where=_IN_FLIGHT_SQL,
            postgresql_where=_IN_FLIGHT_SQL,
        ),
        db.Index("ix_payments_payer_created", "payer_id", "created_at"),
        db.Index("ix_payments_status_expiry", "status", "expired_at"),
        db.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    @property
    def is_terminal(self):
        return self.status in PaymentStatus.TERMINAL
