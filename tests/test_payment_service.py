from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from servicehub.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from servicehub.extensions import db
from servicehub.gateways import GatewayTransientError, StatusCheck
from servicehub.models import (
    BookingPaymentStatus,
    Notification,
    Payment,
    PaymentRail,
    PaymentStatus,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from servicehub.services.payment_service import EXPIRY_REASON, generate_payment_reference

PHONE = "+237 670 000 001"


def _initiate(payments, booking, rail=PaymentRail.MTN_MONEY, amount="25000"):
    return payments.initiate(
        booking_id=booking.id,
        amount=amount,
        rail=rail,
        payer_id=booking.seeker_id,
        phone_number=PHONE,
    ).payment


def _mtn_webhook(payment, status="SUCCESSFUL"):
    return {
        "externalId": payment.payment_reference,
        "referenceId": payment.provider_transaction_id,
        "status": status,
        "financialTransactionId": "FT-123",
    }


def _wallet(provider_id):
    return Wallet.query.filter_by(provider_id=provider_id).one()


def _ledger(provider_id, tx_type):
    return WalletTransaction.query.filter_by(provider_id=provider_id, type=tx_type).all()


def test_generate_payment_reference_format():
    reference = generate_payment_reference()
    prefix, millis, suffix = reference.split("-")
    assert prefix == "PAY"
    assert millis.isdigit()
    assert len(suffix) == 6 and suffix == suffix.upper()


def test_initiate_moves_payment_to_processing(payments, gateway, booking):
    result = payments.initiate(
        booking_id=booking.id, amount="25000", rail="mtn_money", payer_id=booking.seeker_id, phone_number=PHONE
    )

    payment = result.payment
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.provider_transaction_id == "vendor-1"
    assert payment.amount == Decimal("25000.00")
    assert payment.receiver_id == booking.provider_id
    assert payment.phone_number == "670000001"
    assert payment.provider_metadata["reference_id"] == "vendor-1"
    assert payment.provider_metadata["rail"] == PaymentRail.MTN_MONEY
    assert result.timeout == 300
    assert "MTN" in result.message
    assert gateway.collections[0]["reference"] == payment.payment_reference

    expires_in = payment.expired_at.replace(tzinfo=None) - payment.created_at.replace(tzinfo=None)
    assert timedelta(minutes=14) < expires_in <= timedelta(minutes=15, seconds=1)


def test_initiate_rejects_amount_that_differs_from_booking(payments, gateway, booking):
    with pytest.raises(BadRequestError, match="does not match"):
        _initiate(payments, booking, amount="30000")

    assert Payment.query.count() == 0
    assert gateway.collections == []


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"rail": "paypal"}, "Unsupported payment provider"),
        ({"phone_number": "+33612345678"}, "Cameroon"),
        ({"amount": "50"}, "between"),
        ({"amount": "abc"}, "must be a number"),
        ({"amount": None}, "required"),
    ],
)
def test_initiate_validates_request(payments, booking, overrides, message):
    kwargs = {
        "booking_id": booking.id,
        "amount": "25000",
        "rail": PaymentRail.MTN_MONEY,
        "payer_id": booking.seeker_id,
        "phone_number": PHONE,
    }
    kwargs.update(overrides)
    with pytest.raises(BadRequestError, match=message):
        payments.initiate(**kwargs)
    assert Payment.query.count() == 0


def test_initiate_unknown_booking(payments, seeker):
    with pytest.raises(NotFoundError):
        payments.initiate(
            booking_id=9999, amount="25000", rail=PaymentRail.MTN_MONEY, payer_id=seeker.id, phone_number=PHONE
        )


def test_initiate_only_for_own_booking(payments, booking, make_user):
    stranger = make_user()
    with pytest.raises(BadRequestError, match="your own bookings"):
        payments.initiate(
            booking_id=booking.id, amount="25000", rail=PaymentRail.MTN_MONEY, payer_id=stranger.id, phone_number=PHONE
        )


def test_initiate_refuses_paid_booking(payments, make_booking):
    booking = make_booking(payment_status=BookingPaymentStatus.PAID)
    with pytest.raises(ConflictError, match="already paid"):
        _initiate(payments, booking)


def test_second_initiation_conflicts_while_first_in_flight(payments, booking):
    _initiate(payments, booking)
    with pytest.raises(ConflictError, match="already in progress"):
        _initiate(payments, booking, rail=PaymentRail.ORANGE_MONEY)
    assert Payment.query.count() == 1


def test_gateway_rejection_marks_payment_failed(payments, rejecting_gateway, booking):
    with pytest.raises(BadRequestError, match="Payment initiation failed"):
        _initiate(payments, booking)

    payment = Payment.query.one()
    assert payment.status == PaymentStatus.FAILED
    assert "PAYER_NOT_FOUND" in payment.failure_reason

    # A failed attempt does not block a retry.
    rejecting_gateway.fail_with = None
    retry = _initiate(payments, booking)
    assert retry.status == PaymentStatus.PROCESSING


def test_unexpected_gateway_error_is_reraised(payments, gateway, booking):
    gateway.fail_with = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        _initiate(payments, booking)
    assert Payment.query.one().status == PaymentStatus.FAILED


def test_successful_webhook_pays_booking_and_credits_wallet(payments, booking, provider, seeker):
    payment = _initiate(payments, booking)

    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment))

    assert payment.status == PaymentStatus.SUCCESSFUL
    assert payment.processed_at is not None
    assert payment.webhook_received_at is not None
    assert payment.provider_metadata["financial_transaction_id"] == "FT-123"
    assert booking.payment_status == BookingPaymentStatus.PAID
    assert booking.paid_at is not None

    wallet = _wallet(provider.id)
    assert wallet.balance == Decimal("22500.00")
    assert wallet.total_earnings == Decimal("22500.00")
    [earning] = _ledger(provider.id, TransactionType.EARNING)
    [commission] = _ledger(provider.id, TransactionType.COMMISSION)
    assert earning.amount == Decimal("22500.00")
    assert earning.booking_id == booking.id
    assert commission.amount == Decimal("-2500.00")

    assert Notification.query.filter_by(user_id=seeker.id, subject_ref=payment.payment_reference).count() == 1
    assert Notification.query.filter_by(user_id=provider.id, subject_ref=payment.payment_reference).count() == 1


def test_webhook_replay_credits_once(payments, booking, provider):
    payment = _initiate(payments, booking)
    payload = _mtn_webhook(payment)

    payments.reconcile(PaymentRail.MTN_MONEY, payload)
    payments.reconcile(PaymentRail.MTN_MONEY, payload)

    assert len(_ledger(provider.id, TransactionType.EARNING)) == 1
    assert len(_ledger(provider.id, TransactionType.COMMISSION)) == 1
    assert _wallet(provider.id).balance == Decimal("22500.00")


def test_webhook_found_by_vendor_id_when_reference_missing(payments, booking):
    payment = _initiate(payments, booking)
    payments.reconcile(PaymentRail.MTN_MONEY, {"referenceId": payment.provider_transaction_id, "status": "FAILED"})
    assert payment.status == PaymentStatus.FAILED


def test_webhook_for_unknown_payment(payments):
    with pytest.raises(NotFoundError):
        payments.reconcile(PaymentRail.MTN_MONEY, {"externalId": "PAY-0-ABCDEF", "status": "SUCCESSFUL"})


def test_webhook_without_identifiers_is_rejected(payments):
    with pytest.raises(BadRequestError, match="Missing payment reference"):
        payments.reconcile(PaymentRail.MTN_MONEY, {"status": "SUCCESSFUL"})


def test_webhook_on_wrong_rail_is_rejected(payments, booking):
    payment = _initiate(payments, booking, rail=PaymentRail.MTN_MONEY)
    with pytest.raises(BadRequestError, match="does not match"):
        payments.reconcile(PaymentRail.ORANGE_MONEY, {"order_id": payment.payment_reference, "status": "SUCCESS"})
    assert payment.status == PaymentStatus.PROCESSING


def test_orange_successfull_spelling_is_success(payments, booking, provider):
    payment = _initiate(payments, booking, rail=PaymentRail.ORANGE_MONEY)
    payments.reconcile(
        PaymentRail.ORANGE_MONEY,
        {"order_id": payment.payment_reference, "pay_token": payment.provider_transaction_id, "status": "SUCCESSFULL"},
    )
    assert payment.status == PaymentStatus.SUCCESSFUL
    assert _wallet(provider.id).balance == Decimal("22500.00")


def test_unknown_vendor_status_fails_payment(payments, booking, seeker):
    payment = _initiate(payments, booking, rail=PaymentRail.ORANGE_MONEY)
    payments.reconcile(
        PaymentRail.ORANGE_MONEY,
        {"order_id": payment.payment_reference, "status": "WEIRD", "message": "Subscriber not found"},
    )

    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Subscriber not found"
    assert booking.payment_status == BookingPaymentStatus.PENDING
    assert Notification.query.filter_by(user_id=seeker.id, title="Payment failed").count() == 1
    assert WalletTransaction.query.count() == 0


def test_pending_webhook_keeps_payment_in_flight(payments, booking):
    payment = _initiate(payments, booking)
    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment, status="PENDING"))
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.webhook_received_at is not None


def test_cancel_in_flight_payment(payments, booking):
    payment = _initiate(payments, booking)
    cancelled = payments.cancel(payment.payment_reference, booking.seeker_id)
    assert cancelled.status == PaymentStatus.CANCELLED
    assert cancelled.processed_at is not None


def test_cancel_successful_payment_leaves_ledger_untouched(payments, booking, provider):
    payment = _initiate(payments, booking)
    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment))

    with pytest.raises(BadRequestError, match="cannot be cancelled"):
        payments.cancel(payment.payment_reference, booking.seeker_id)

    assert payment.status == PaymentStatus.SUCCESSFUL
    assert _wallet(provider.id).balance == Decimal("22500.00")
    assert WalletTransaction.query.count() == 2


def test_cancel_requires_payer(payments, booking, provider):
    payment = _initiate(payments, booking)
    with pytest.raises(BadRequestError, match="your own payments"):
        payments.cancel(payment.payment_reference, provider.id)


def test_success_after_cancel_is_ignored(payments, booking, provider):
    payment = _initiate(payments, booking)
    payments.cancel(payment.payment_reference, booking.seeker_id)

    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment))

    assert payment.status == PaymentStatus.CANCELLED
    assert booking.payment_status == BookingPaymentStatus.PENDING
    assert Wallet.query.filter_by(provider_id=provider.id).first() is None


def test_verify_applies_rail_status(payments, gateway, booking, provider):
    payment = _initiate(payments, booking)
    gateway.next_status = StatusCheck(status=PaymentStatus.SUCCESSFUL, vendor_status="SUCCESSFUL", raw={"status": "SUCCESSFUL"})

    verified = payments.verify(payment.payment_reference, booking.seeker_id)

    assert verified.status == PaymentStatus.SUCCESSFUL
    assert verified.provider_metadata["api_response"] == {"status": "SUCCESSFUL"}
    assert _wallet(provider.id).balance == Decimal("22500.00")


def test_verify_reports_gateway_failure(payments, gateway, booking):
    payment = _initiate(payments, booking)

    def unavailable(rail, vendor_transaction_id):
        raise GatewayTransientError("MTN Mobile Money returned 503")

    gateway.fetch_status = unavailable
    with pytest.raises(BadRequestError, match="verification failed"):
        payments.verify(payment.payment_reference, booking.seeker_id)
    assert payment.status == PaymentStatus.PROCESSING


def test_verify_hidden_from_other_users(payments, booking, make_user):
    payment = _initiate(payments, booking)
    with pytest.raises(ForbiddenError):
        payments.verify(payment.payment_reference, make_user().id)


def test_sweep_expires_stale_payments_and_frees_booking(payments, booking):
    payment = _initiate(payments, booking)

    assert payments.sweep_expired(now=datetime.now(timezone.utc)) == 0
    expired = payments.sweep_expired(now=datetime.now(timezone.utc) + timedelta(minutes=16))

    assert expired == 1
    assert payment.status == PaymentStatus.EXPIRED
    assert payment.failure_reason == EXPIRY_REASON
    assert not payments.has_payment_in_flight(booking.id)
    assert _initiate(payments, booking).status == PaymentStatus.PROCESSING


def test_expired_payment_ignores_late_success(payments, booking, provider):
    payment = _initiate(payments, booking)
    payments.sweep_expired(now=datetime.now(timezone.utc) + timedelta(minutes=16))

    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment))

    assert payment.status == PaymentStatus.EXPIRED
    assert WalletTransaction.query.filter_by(provider_id=provider.id).count() == 0


def test_purge_keeps_successful_payments(payments, gateway, make_booking):
    paid_booking = make_booking()
    paid = _initiate(payments, paid_booking)
    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(paid))

    failed_booking = make_booking()
    gateway.fail_with = GatewayTransientError("MTN Mobile Money is unreachable")
    with pytest.raises(BadRequestError):
        _initiate(payments, failed_booking)

    assert payments.purge_terminal(older_than_days=30) == 0
    purged = payments.purge_terminal(older_than_days=30, now=datetime.now(timezone.utc) + timedelta(days=31))

    assert purged == 1
    assert [p.status for p in Payment.query.all()] == [PaymentStatus.SUCCESSFUL]
    assert WalletTransaction.query.count() == 2


def test_history_is_paginated_newest_first(payments, make_booking):
    bookings = [make_booking() for _ in range(3)]
    references = [_initiate(payments, b).payment_reference for b in bookings]

    items, pagination = payments.history(bookings[0].seeker_id, page=1, limit=2)

    assert [p.payment_reference for p in items] == references[::-1][:2]
    assert pagination == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}


def test_history_rejects_unknown_status(payments, seeker):
    with pytest.raises(BadRequestError):
        payments.history(seeker.id, status="lost")


def test_one_in_flight_payment_per_booking_enforced_by_database(app, booking):
    def in_flight_row(status):
        return Payment(
            payer_id=booking.seeker_id,
            receiver_id=booking.provider_id,
            booking_id=booking.id,
            amount=Decimal("25000"),
            provider=PaymentRail.MTN_MONEY,
            status=status,
            phone_number="670000001",
            payment_reference=generate_payment_reference() + status[:2].upper(),
            expired_at=datetime.now(timezone.utc) + timedelta(minutes=15),
        )

    db.session.add(in_flight_row(PaymentStatus.PENDING))
    db.session.commit()
    db.session.add(in_flight_row(PaymentStatus.FAILED))
    db.session.commit()

    db.session.add(in_flight_row(PaymentStatus.PROCESSING))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_initiate_rejects_sub_cent_amount(payments, gateway, booking):
    with pytest.raises(BadRequestError, match="two decimal places"):
        _initiate(payments, booking, amount="25000.004")

    assert Payment.query.count() == 0
    assert gateway.collections == []


def test_initiate_accepts_equal_amount_written_with_trailing_zeros(payments, booking):
    assert _initiate(payments, booking, amount="25000.000").status == PaymentStatus.PROCESSING


def test_stale_in_memory_status_cannot_credit_twice(payments, booking, provider):
    payment = _initiate(payments, booking)
    payments.reconcile(PaymentRail.MTN_MONEY, _mtn_webhook(payment))

    # Simulate a second worker that loaded the row before the first success committed.
    set_committed_value(payment, "status", PaymentStatus.PROCESSING)
    payments._apply_outcome(payment, PaymentStatus.SUCCESSFUL)

    assert payment.status == PaymentStatus.SUCCESSFUL
    assert len(_ledger(provider.id, TransactionType.EARNING)) == 1
    assert _wallet(provider.id).balance == Decimal("22500.00")


def test_concurrent_initiation_loses_on_unique_index(payments, gateway, booking, monkeypatch):
    _initiate(payments, booking)
    # The other request passed its in-flight check before this one committed.
    monkeypatch.setattr(payments, "has_payment_in_flight", lambda booking_id: False)

    with pytest.raises(ConflictError, match="already in progress"):
        _initiate(payments, booking, rail=PaymentRail.ORANGE_MONEY)

    assert Payment.query.count() == 1
    assert len(gateway.collections) == 1
