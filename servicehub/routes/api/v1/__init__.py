from flask import Blueprint

from servicehub.routes.api.v1.auth import api_auth_bp
from servicehub.routes.api.v1.bookings import api_booking_bp
from servicehub.routes.api.v1.notifications import api_notification_bp
from servicehub.routes.api.v1.payments import api_payment_bp
from servicehub.routes.api.v1.wallet import api_wallet_bp

api_v1_bp = Blueprint("api_v1", __name__)
api_v1_bp.register_blueprint(api_auth_bp, url_prefix="/auth")
api_v1_bp.register_blueprint(api_booking_bp, url_prefix="/bookings")
api_v1_bp.register_blueprint(api_payment_bp, url_prefix="/payments")
api_v1_bp.register_blueprint(api_wallet_bp, url_prefix="/wallet")
api_v1_bp.register_blueprint(api_notification_bp, url_prefix="/notifications")
