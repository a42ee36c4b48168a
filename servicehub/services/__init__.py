from flask import current_app

from servicehub.services.auth_service import AuthService
from servicehub.services.booking_service import BookingService
from servicehub.services.notification_service import NotificationService
from servicehub.services.payment_service import PaymentService
from servicehub.services.wallet_service import WalletService


def payment_service():
    return current_app.extensions["payment_service"]


def wallet_service():
    return current_app.extensions["wallet_service"]


__all__ = [
    "AuthService",
    "BookingService",
    "NotificationService",
    "PaymentService",
    "WalletService",
    "payment_service",
    "wallet_service",
]
