from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from servicehub.decorators import role_required
from servicehub.errors import AppError, NotFoundError
from servicehub.models import Booking, UserRole
from servicehub.services import BookingService, wallet_service

api_booking_bp = Blueprint("api_booking", __name__)


def _booking_payload(booking):
    return {
        "id": booking.id,
        "seeker_id": booking.seeker_id,
        "provider_id": booking.provider_id,
        "service_title": booking.service_title,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "total_amount": str(booking.total_amount),
        "currency": booking.currency,
        "scheduled_for": booking.scheduled_for.isoformat(),
    }


def _parse_datetime(raw):
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError as exc:
        raise AppError("scheduled_for must be an ISO 8601 datetime.", 400) from exc


@api_booking_bp.post("")
@login_required
@role_required(UserRole.SEEKER)
def create_booking():
    payload = request.get_json(silent=True) or {}
    booking = BookingService.create_booking(
        seeker_id=current_user.id,
        provider_id=payload.get("provider_id"),
        service_title=payload.get("service_title"),
        total_amount=payload.get("total_amount"),
        scheduled_for=_parse_datetime(payload.get("scheduled_for")),
        seeker_note=payload.get("seeker_note"),
    )
    return jsonify(_booking_payload(booking)), 201


@api_booking_bp.get("/me")
@login_required
def my_bookings():
    if current_user.role == UserRole.PROVIDER:
        query = Booking.query.filter_by(provider_id=current_user.id)
    else:
        query = Booking.query.filter_by(seeker_id=current_user.id)
    rows = query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()
    return jsonify([_booking_payload(b) for b in rows])


@api_booking_bp.patch("/<int:booking_id>/status")
@login_required
def update_status(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = BookingService.get_booking(booking_id)
    if not booking:
        raise NotFoundError("Booking not found.")
    booking = BookingService.transition_booking(
        booking, payload.get("status"), current_user, earnings=wallet_service()
    )
    return jsonify(_booking_payload(booking))
