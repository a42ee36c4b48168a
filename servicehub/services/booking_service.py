from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func

from servicehub.errors import AppError, ForbiddenError, NotFoundError
from servicehub.extensions import db
from servicehub.models import Booking, BookingPaymentStatus, BookingStatus, User, UserRole
from servicehub.money import parse_amount
from servicehub.services.notification_service import NotificationService

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

# Moves a seeker may make on their own booking; everything else belongs to the provider.
SEEKER_TRANSITIONS = {BookingStatus.CANCELLED}

TIMESTAMP_FIELDS = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.IN_PROGRESS: "started_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


class BookingService:
    @staticmethod
    def get_booking(booking_id):
        try:
            return db.session.get(Booking, int(booking_id))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def create_booking(seeker_id, provider_id, service_title, total_amount, scheduled_for=None, seeker_note=None):
        title = (service_title or "").strip()
        if not title:
            raise AppError("Service title is required.", 400)
        amount = parse_amount(total_amount, label="Total amount")

        try:
            provider = db.session.get(User, int(provider_id))
        except (TypeError, ValueError):
            provider = None
        if not provider or provider.role != UserRole.PROVIDER or not provider.is_active_user:
            raise NotFoundError("Provider not found.")
        if provider.id == seeker_id:
            raise AppError("You cannot book yourself.", 400)

        booking = Booking(
            seeker_id=seeker_id,
            provider_id=provider.id,
            service_title=title,
            scheduled_for=scheduled_for or datetime.now(timezone.utc),
            total_amount=amount,
            status=BookingStatus.PENDING,
            payment_status=BookingPaymentStatus.PENDING,
            seeker_note=(seeker_note or "").strip() or None,
        )
        db.session.add(booking)
        db.session.flush()
        NotificationService.push(
            provider.id,
            "New booking request",
            f"You received a booking request for {title}.",
            subject_ref=str(booking.id),
        )
        db.session.commit()
        return booking

    @staticmethod
    def transition_booking(booking, new_status, actor_user, earnings=None):
        """Move ``booking`` along its lifecycle.

        Completing a booking that is already paid hands the amount to ``earnings``
        (anything exposing ``process_earning``); the ledger ignores bookings it has
        already credited, so the payment webhook and the completion can both call it.
        """
        current = booking.status
        new_status = (new_status or "").strip().lower()

        if actor_user.role == UserRole.PROVIDER:
            if booking.provider_id != actor_user.id:
                raise ForbiddenError("Not authorized for this booking.")
        elif actor_user.role == UserRole.SEEKER:
            if booking.seeker_id != actor_user.id or new_status not in SEEKER_TRANSITIONS:
                raise ForbiddenError("Not authorized for this booking.")
        elif actor_user.role != UserRole.ADMIN:
            raise ForbiddenError("Not authorized for this booking.")

        if new_status not in BOOKING_TRANSITIONS.get(current, set()):
            raise AppError(f"Invalid status transition from {current} to {new_status}.", 400)

        booking.status = new_status
        stamp = TIMESTAMP_FIELDS.get(new_status)
        if stamp:
            setattr(booking, stamp, datetime.now(timezone.utc))

        if new_status == BookingStatus.CONFIRMED:
            NotificationService.push(
                booking.seeker_id, "Booking confirmed", f"Your booking for {booking.service_title} was confirmed."
            )
        elif new_status in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            notify = booking.provider_id if actor_user.id == booking.seeker_id else booking.seeker_id
            NotificationService.push(
                notify, f"Booking {new_status}", f"The booking for {booking.service_title} was {new_status}."
            )
        elif new_status == BookingStatus.COMPLETED:
            NotificationService.push(
                booking.seeker_id, "Service completed", f"Booking #{booking.id} was marked as completed."
            )
            if booking.payment_status == BookingPaymentStatus.PAID and earnings is not None:
                earnings.process_earning(booking.provider_id, booking.id, booking.total_amount)

        db.session.commit()
        return booking

    @staticmethod
    def mark_paid(booking):
        return Booking.query.filter_by(id=booking.id).update(
            {"payment_status": BookingPaymentStatus.PAID, "paid_at": datetime.now(timezone.utc)}
        )

    @staticmethod
    def revert_payment_pending(booking):
        return (
            Booking.query.filter(Booking.id == booking.id)
            .filter(Booking.payment_status != BookingPaymentStatus.PAID)
            .update({"payment_status": BookingPaymentStatus.PENDING}, synchronize_session="fetch")
        )

    @staticmethod
    def pending_total_for_provider(provider_id):
        total = (
            db.session.query(func.coalesce(func.sum(Booking.total_amount), 0))
            .filter(Booking.provider_id == provider_id)
            .filter(Booking.status.in_(BookingStatus.EARNING_PENDING))
            .filter(Booking.payment_status == BookingPaymentStatus.PAID)
            .scalar()
        )
        return Decimal(str(total))
