import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from servicehub.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from servicehub.extensions import db
from servicehub.gateways import GatewayError, MalformedWebhookError, parse_webhook
from servicehub.gateways.events import dump_metadata, load_metadata
from servicehub.models import BookingPaymentStatus, Payment, PaymentRail, PaymentStatus, PaymentType
from servicehub.money import parse_amount, to_money
from servicehub.pagination import paginate_query
from servicehub.services.auth_service import normalize_phone
from servicehub.services.notification_service import NotificationService

EXPIRY_REASON = "Payment expired before confirmation"

STATUS_MESSAGES = {
    PaymentStatus.PENDING: "Payment is pending initiation",
    PaymentStatus.PROCESSING: "Payment is being processed",
    PaymentStatus.SUCCESSFUL: "Payment completed successfully",
    PaymentStatus.FAILED: "Payment failed",
    PaymentStatus.CANCELLED: "Payment was cancelled",
    PaymentStatus.EXPIRED: "Payment has expired",
}

INITIATION_MESSAGES = {
    PaymentRail.MTN_MONEY: "MTN Mobile Money payment initiated. Please complete the transaction on your phone.",
    PaymentRail.ORANGE_MONEY: "Orange Money payment initiated. Please complete the transaction on your phone.",
}


def generate_payment_reference():
    return f"PAY-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def status_message(status):
    return STATUS_MESSAGES.get(status, "Unknown payment status")


@dataclass(frozen=True)
class InitiationResult:
    payment: Payment
    message: str
    timeout: int


class PaymentService:
    """Drives one payment attempt from initiation to a terminal state.

    Every status change is a conditional ``UPDATE ... WHERE status IN (...)``.
    Only the request whose update matched a row applies the booking and ledger
    side effects, so webhook replays and races between webhooks, cancels and
    the expiry sweep cannot credit a wallet twice.
    """

    def __init__(
        self,
        gateway,
        ledger,
        bookings,
        expiry_minutes=15,
        timeout_seconds=300,
        min_amount=Decimal("100"),
        max_amount=Decimal("1000000"),
        currency="XAF",
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.bookings = bookings
        self.expiry = timedelta(minutes=expiry_minutes)
        self.timeout_seconds = timeout_seconds
        self.min_amount = Decimal(str(min_amount))
        self.max_amount = Decimal(str(max_amount))
        self.currency = currency

    @classmethod
    def from_config(cls, config, gateway, ledger, bookings):
        return cls(
            gateway=gateway,
            ledger=ledger,
            bookings=bookings,
            expiry_minutes=config.get("PAYMENT_EXPIRY_MINUTES", 15),
            timeout_seconds=config.get("PAYMENT_TIMEOUT_SECONDS", 300),
            min_amount=config.get("MIN_PAYMENT_AMOUNT", Decimal("100")),
            max_amount=config.get("MAX_PAYMENT_AMOUNT", Decimal("1000000")),
            currency=config.get("PAYMENT_CURRENCY", "XAF"),
        )

    # -- lookups -------------------------------------------------------------

    @staticmethod
    def get_by_reference(payment_reference):
        payment = Payment.query.filter_by(payment_reference=(payment_reference or "").strip()).first()
        if not payment:
            raise NotFoundError("Payment not found.")
        return payment

    @staticmethod
    def has_payment_in_flight(booking_id):
        return (
            Payment.query.filter(Payment.booking_id == booking_id)
            .filter(Payment.status.in_(PaymentStatus.IN_FLIGHT))
            .first()
            is not None
        )

    @staticmethod
    def _transition(payment, from_statuses, values):
        """Apply ``values`` only while the payment is still in ``from_statuses``."""
        moved = (
            Payment.query.filter(Payment.id == payment.id)
            .filter(Payment.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
        db.session.expire(payment)
        return moved == 1

    # -- initiation ----------------------------------------------------------

    def _validate_request(self, amount, rail, phone_number):
        rail = (rail or "").strip().lower()
        if rail not in PaymentRail.ALL:
            raise BadRequestError("Unsupported payment provider.")
        amount = parse_amount(amount)
        if amount < self.min_amount or amount > self.max_amount:
            raise BadRequestError(
                f"Payment amount must be between {self.min_amount:f} and {self.max_amount:f} {self.currency}."
            )
        phone = normalize_phone(phone_number)
        if not phone:
            raise BadRequestError("Phone number must be a valid Cameroon number (+237XXXXXXXXX).")
        return amount, rail, phone

    def initiate(self, booking_id, amount, rail, payer_id, phone_number, account_name=None, description=None):
        amount, rail, phone = self._validate_request(amount, rail, phone_number)

        booking = self.bookings.get_booking(booking_id)
        if not booking:
            raise NotFoundError("Booking not found.")
        if booking.seeker_id != payer_id:
            raise BadRequestError("You can only pay for your own bookings.")
        if booking.payment_status == BookingPaymentStatus.PAID:
            raise ConflictError("Booking is already paid.")
        if to_money(booking.total_amount) != amount:
            raise BadRequestError("Payment amount does not match booking amount.")
        if self.has_payment_in_flight(booking.id):
            raise ConflictError("A payment is already in progress for this booking.")

        reference = generate_payment_reference()
        description = (description or "").strip() or f"Payment for booking {booking.id}"
        payment = Payment(
            payer_id=payer_id,
            receiver_id=booking.provider_id,
            booking_id=booking.id,
            amount=amount,
            currency=self.currency,
            provider=rail,
            status=PaymentStatus.PENDING,
            payment_type=PaymentType.BOOKING_PAYMENT,
            phone_number=phone,
            account_name=(account_name or "").strip() or None,
            payment_reference=reference,
            description=description[:255],
            provider_metadata=dump_metadata(load_metadata(rail, {})),
            expired_at=datetime.now(timezone.utc) + self.expiry,
        )
        try:
            db.session.add(payment)
            db.session.commit()
        except IntegrityError as exc:
            # Lost the race against a concurrent initiation for the same booking.
            db.session.rollback()
            raise ConflictError("A payment is already in progress for this booking.") from exc

        try:
            result = self.gateway.request_collection(rail, amount, phone, reference, description=description)
        except GatewayError as exc:
            current_app.logger.error("Payment initiation failed for %s via %s: %s", reference, rail, exc.message)
            self._transition(
                payment,
                (PaymentStatus.PENDING,),
                {"status": PaymentStatus.FAILED, "failure_reason": exc.message[:255]},
            )
            db.session.commit()
            raise BadRequestError(f"Payment initiation failed: {exc.message}") from exc
        except Exception:
            current_app.logger.exception("Unexpected error initiating payment %s", reference)
            self._transition(
                payment,
                (PaymentStatus.PENDING,),
                {"status": PaymentStatus.FAILED, "failure_reason": "Internal error during initiation"},
            )
            db.session.commit()
            raise

        metadata = load_metadata(rail, payment.provider_metadata)
        metadata.api_response = result.raw_response
        metadata.callback_url = self.gateway.callback_url(rail)
        if rail == PaymentRail.MTN_MONEY:
            metadata.reference_id = result.vendor_transaction_id
        else:
            metadata.pay_token = result.vendor_transaction_id
            metadata.payment_url = result.payment_url

        moved = self._transition(
            payment,
            (PaymentStatus.PENDING,),
            {
                "status": PaymentStatus.PROCESSING,
                "provider_transaction_id": result.vendor_transaction_id,
                "provider_metadata": dump_metadata(metadata),
            },
        )
        if not moved:
            # A webhook or cancel got there first; keep its status, still remember the vendor id.
            Payment.query.filter_by(id=payment.id).update(
                {"provider_transaction_id": result.vendor_transaction_id}, synchronize_session=False
            )
            db.session.expire(payment)
        db.session.commit()
        current_app.logger.info("Payment %s initiated via %s for booking %s", reference, rail, booking.id)
        return InitiationResult(payment=payment, message=INITIATION_MESSAGES[rail], timeout=self.timeout_seconds)

    # -- reconciliation ------------------------------------------------------

    def reconcile(self, rail, payload):
        try:
            event = parse_webhook(rail, payload)
        except MalformedWebhookError as exc:
            raise BadRequestError(str(exc)) from exc

        if event.reference:
            payment = Payment.query.filter_by(payment_reference=event.reference).first()
        elif event.vendor_transaction_id:
            payment = Payment.query.filter_by(provider_transaction_id=event.vendor_transaction_id).first()
        else:
            raise BadRequestError("Missing payment reference in webhook.")
        if not payment:
            raise NotFoundError("Payment not found for webhook.")
        if payment.provider != rail:
            raise BadRequestError("Webhook provider does not match the payment provider.")

        current_app.logger.info(
            "Received %s webhook for %s with status %s", rail, payment.payment_reference, event.vendor_status
        )
        metadata = load_metadata(payment.provider, payment.provider_metadata)
        metadata.record_event(event)
        return self._apply_outcome(
            payment,
            event.status,
            reason=event.reason,
            metadata=metadata,
            webhook_received_at=datetime.now(timezone.utc),
        )

    def _apply_outcome(self, payment, new_status, reason=None, metadata=None, webhook_received_at=None):
        if payment.is_terminal:
            current_app.logger.info(
                "Ignoring %s outcome for %s: already %s", new_status, payment.payment_reference, payment.status
            )
            return payment

        now = datetime.now(timezone.utc)
        values = {"status": new_status}
        if metadata is not None:
            values["provider_metadata"] = dump_metadata(metadata)
        if webhook_received_at is not None:
            values["webhook_received_at"] = webhook_received_at
        if new_status in (PaymentStatus.SUCCESSFUL, PaymentStatus.CANCELLED):
            values["processed_at"] = now
        elif new_status == PaymentStatus.FAILED:
            values["failure_reason"] = (reason or "Payment failed")[:255]

        if not self._transition(payment, PaymentStatus.IN_FLIGHT, values):
            current_app.logger.warning(
                "Payment %s changed concurrently; %s outcome not applied", payment.payment_reference, new_status
            )
            db.session.commit()
            return payment

        booking = payment.booking
        if new_status == PaymentStatus.SUCCESSFUL:
            self.bookings.mark_paid(booking)
            self.ledger.process_earning(payment.receiver_id, payment.booking_id, payment.amount)
            NotificationService.push(
                payment.payer_id,
                "Payment successful",
                f"Your payment of {to_money(payment.amount)} {payment.currency} was received.",
                subject_ref=payment.payment_reference,
            )
            NotificationService.push(
                payment.receiver_id,
                "Payment received",
                f"Booking #{payment.booking_id} has been paid.",
                subject_ref=payment.payment_reference,
            )
            current_app.logger.info("Payment %s completed successfully", payment.payment_reference)
        elif new_status == PaymentStatus.FAILED:
            self.bookings.revert_payment_pending(booking)
            NotificationService.push(
                payment.payer_id,
                "Payment failed",
                f"Your payment for booking #{payment.booking_id} failed: {payment.failure_reason}",
                subject_ref=payment.payment_reference,
            )
            current_app.logger.warning("Payment %s failed: %s", payment.payment_reference, payment.failure_reason)

        db.session.commit()
        return payment

    def verify(self, payment_reference, requester_id):
        """Ask the rail for the current status of a payment still in flight."""
        payment = self.get_by_reference(payment_reference)
        if requester_id not in (payment.payer_id, payment.receiver_id):
            raise ForbiddenError("Not authorized for this payment.")
        if payment.is_terminal or not payment.provider_transaction_id:
            return payment

        try:
            check = self.gateway.fetch_status(payment.provider, payment.provider_transaction_id)
        except GatewayError as exc:
            current_app.logger.warning("Status check for %s failed: %s", payment.payment_reference, exc.message)
            raise BadRequestError(f"Payment verification failed: {exc.message}") from exc

        metadata = load_metadata(payment.provider, payment.provider_metadata)
        metadata.api_response = check.raw
        return self._apply_outcome(payment, check.status, reason=check.reason, metadata=metadata)

    # -- user actions --------------------------------------------------------

    def status(self, payment_reference):
        return self.get_by_reference(payment_reference)

    def cancel(self, payment_reference, requester_id):
        payment = self.get_by_reference(payment_reference)
        if payment.payer_id != requester_id:
            raise BadRequestError("You can only cancel your own payments.")
        if payment.status not in PaymentStatus.IN_FLIGHT:
            raise BadRequestError("Payment cannot be cancelled in its current state.")

        moved = self._transition(
            payment,
            PaymentStatus.IN_FLIGHT,
            {"status": PaymentStatus.CANCELLED, "processed_at": datetime.now(timezone.utc)},
        )
        if not moved:
            db.session.rollback()
            raise BadRequestError("Payment cannot be cancelled in its current state.")
        db.session.commit()
        current_app.logger.info("Payment %s cancelled by payer", payment.payment_reference)
        return payment

    def history(self, user_id, page=1, limit=10, status=None):
        query = Payment.query.filter(Payment.payer_id == user_id)
        if status:
            if status not in PaymentStatus.ALL:
                raise BadRequestError("Invalid payment status filter.")
            query = query.filter(Payment.status == status)
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        return paginate_query(query, page, limit)

    # -- maintenance ---------------------------------------------------------

    def sweep_expired(self, now=None):
        now = now or datetime.now(timezone.utc)
        expired = (
            Payment.query.filter(Payment.status.in_(PaymentStatus.IN_FLIGHT))
            .filter(Payment.expired_at < now)
            .update(
                {"status": PaymentStatus.EXPIRED, "failure_reason": EXPIRY_REASON, "processed_at": now},
                synchronize_session=False,
            )
        )
        db.session.commit()
        if expired:
            current_app.logger.info("Expired %s stale payment(s)", expired)
        return expired

    def purge_terminal(self, older_than_days=30, now=None):
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)
        purged = (
            Payment.query.filter(Payment.status.in_(PaymentStatus.DISCARDABLE))
            .filter(Payment.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        current_app.logger.info("Purged %s payment(s) older than %s days", purged, older_than_days)
        return purged
