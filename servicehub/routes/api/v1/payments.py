from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from servicehub.decorators import role_required
from servicehub.errors import AppError, BadRequestError, ForbiddenError
from servicehub.extensions import limiter
from servicehub.models import PaymentRail, UserRole
from servicehub.money import to_money
from servicehub.pagination import parse_page_args
from servicehub.services import payment_service
from servicehub.services.payment_service import status_message

api_payment_bp = Blueprint("api_payment", __name__)

SIGNATURE_HEADERS = {
    PaymentRail.MTN_MONEY: "X-MTN-Signature",
    PaymentRail.ORANGE_MONEY: "X-Orange-Signature",
}


def _iso(value):
    return value.isoformat() if value else None


def _status_payload(payment):
    return {
        "payment_reference": payment.payment_reference,
        "status": payment.status,
        "amount": str(to_money(payment.amount)),
        "currency": payment.currency,
        "provider": payment.provider,
        "booking_id": payment.booking_id,
        "message": status_message(payment.status),
        "failure_reason": payment.failure_reason,
        "processed_at": _iso(payment.processed_at),
    }


def _history_item(payment):
    item = _status_payload(payment)
    item.update(
        {
            "receiver_id": payment.receiver_id,
            "description": payment.description,
            "created_at": _iso(payment.created_at),
            "expired_at": _iso(payment.expired_at),
        }
    )
    return item


@api_payment_bp.post("/initiate")
@login_required
@role_required(UserRole.SEEKER)
@limiter.limit("10 per minute")
def initiate_payment():
    payload = request.get_json(silent=True) or {}
    result = payment_service().initiate(
        booking_id=payload.get("booking_id"),
        amount=payload.get("amount"),
        rail=payload.get("provider"),
        payer_id=current_user.id,
        phone_number=payload.get("phone_number"),
        account_name=payload.get("account_name"),
        description=payload.get("description"),
    )
    payment = result.payment
    return (
        jsonify(
            {
                "payment_reference": payment.payment_reference,
                "status": payment.status,
                "amount": str(to_money(payment.amount)),
                "provider": payment.provider,
                "message": result.message,
                "provider_transaction_id": payment.provider_transaction_id,
                "timeout": result.timeout,
            }
        ),
        201,
    )


@api_payment_bp.get("/status/<payment_reference>")
@login_required
def payment_status(payment_reference):
    payment = payment_service().status(payment_reference)
    if current_user.id not in (payment.payer_id, payment.receiver_id) and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Not authorized for this payment.")
    return jsonify(_status_payload(payment))


@api_payment_bp.post("/verify/<payment_reference>")
@login_required
def verify_payment(payment_reference):
    payment = payment_service().verify(payment_reference, current_user.id)
    return jsonify(_status_payload(payment))


@api_payment_bp.post("/cancel/<payment_reference>")
@login_required
def cancel_payment(payment_reference):
    payment = payment_service().cancel(payment_reference, current_user.id)
    return jsonify(_status_payload(payment))


@api_payment_bp.get("/history")
@login_required
def payment_history():
    page, limit = parse_page_args(request.args.get("page"), request.args.get("limit"))
    payments, pagination = payment_service().history(
        current_user.id, page=page, limit=limit, status=request.args.get("status")
    )
    return jsonify({"payments": [_history_item(p) for p in payments], "pagination": pagination})


def _handle_webhook(rail):
    signature = request.headers.get(SIGNATURE_HEADERS[rail])
    service = payment_service()
    service.gateway.verify_signature(rail, request.get_data(), signature)

    payload = request.get_json(silent=True)
    try:
        if not isinstance(payload, dict):
            raise BadRequestError("Invalid webhook payload.")
        service.reconcile(rail, payload)
    except AppError as err:
        current_app.logger.warning("%s webhook rejected: %s", rail, err.message)
        raise
    except Exception:
        current_app.logger.exception("%s webhook processing failed", rail)
        raise
    return jsonify({"message": "Webhook processed successfully"})


@api_payment_bp.post("/webhook/mtn")
@limiter.exempt
def mtn_webhook():
    return _handle_webhook(PaymentRail.MTN_MONEY)


@api_payment_bp.post("/webhook/orange")
@limiter.exempt
def orange_webhook():
    return _handle_webhook(PaymentRail.ORANGE_MONEY)
