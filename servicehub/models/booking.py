from servicehub.extensions import db
from servicehub.models.base import Money, PKType, TimestampMixin


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    # Paid bookings in these states count towards the provider's pending balance.
    EARNING_PENDING = (CONFIRMED, IN_PROGRESS)


class BookingPaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(TimestampMixin, db.Model):
    __tablename__ = "bookings"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    seeker_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    service_title = db.Column(db.String(160), nullable=False)
    scheduled_for = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(24), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = db.Column(db.String(24), nullable=False, default=BookingPaymentStatus.PENDING, index=True)
    total_amount = db.Column(Money, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="XAF")

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    seeker_note = db.Column(db.Text, nullable=True)

    seeker = db.relationship("User", back_populates="seeker_bookings", foreign_keys=[seeker_id])
    provider = db.relationship("User", back_populates="provider_bookings", foreign_keys=[provider_id])
    payments = db.relationship("Payment", back_populates="booking", lazy="dynamic")

    __table_args__ = (
        db.Index("ix_bookings_provider_status", "provider_id", "status", "payment_status"),
        db.Index("ix_bookings_seeker_status", "seeker_id", "status"),
        db.CheckConstraint("total_amount > 0", name="ck_booking_amount_positive"),
    )
