import itertools
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from servicehub import create_app
from servicehub.extensions import bcrypt, db
from servicehub.gateways import CollectionResult, GatewayRejectedError, StatusCheck
from servicehub.models import Booking, BookingPaymentStatus, BookingStatus, PaymentStatus, User, UserRole

PASSWORD = "correct-horse"


class FakeGateway:
    """Stands in for the rail clients; records calls and returns canned answers."""

    def __init__(self):
        self.collections = []
        self.fail_with = None
        self.next_status = StatusCheck(status=PaymentStatus.PROCESSING, vendor_status="PENDING")
        self._ids = itertools.count(1)

    def callback_url(self, rail):
        return f"https://api.test.local/api/v1/payments/webhook/{rail}"

    def request_collection(self, rail, amount, phone, reference, description=None):
        self.collections.append({"rail": rail, "amount": amount, "phone": phone, "reference": reference})
        if self.fail_with is not None:
            raise self.fail_with
        vendor_id = f"vendor-{next(self._ids)}"
        return CollectionResult(vendor_transaction_id=vendor_id, raw_response={"status_code": 202})

    def fetch_status(self, rail, vendor_transaction_id):
        return self.next_status

    def verify_signature(self, rail, body, signature):
        return True


@pytest.fixture()
def app():
    app = create_app("testing")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_service"].gateway = fake
    return fake


@pytest.fixture()
def payments(app, gateway):
    return app.extensions["payment_service"]


@pytest.fixture()
def wallets(app):
    return app.extensions["wallet_service"]


@pytest.fixture()
def make_user(app):
    counter = itertools.count(1)

    def _make(role=UserRole.SEEKER, **overrides):
        n = next(counter)
        user = User(
            full_name=overrides.pop("full_name", f"{role.title()} {n}"),
            email=overrides.pop("email", f"{role}{n}@example.cm"),
            phone=overrides.pop("phone", f"6700000{n:02d}"),
            role=role,
            password_hash=bcrypt.generate_password_hash(PASSWORD).decode("utf-8"),
            **overrides,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def seeker(make_user):
    return make_user(UserRole.SEEKER)


@pytest.fixture()
def provider(make_user):
    return make_user(UserRole.PROVIDER)


@pytest.fixture()
def make_booking(app, seeker, provider):
    def _make(amount="25000", status=BookingStatus.CONFIRMED, **overrides):
        booking = Booking(
            seeker_id=overrides.pop("seeker_id", seeker.id),
            provider_id=overrides.pop("provider_id", provider.id),
            service_title=overrides.pop("service_title", "House cleaning"),
            scheduled_for=overrides.pop("scheduled_for", datetime.now(timezone.utc)),
            status=status,
            payment_status=overrides.pop("payment_status", BookingPaymentStatus.PENDING),
            total_amount=Decimal(amount),
            **overrides,
        )
        db.session.add(booking)
        db.session.commit()
        return booking

    return _make


@pytest.fixture()
def booking(make_booking):
    return make_booking()


@pytest.fixture()
def login(client):
    def _login(user):
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200, response.get_json()
        return client

    return _login


@pytest.fixture()
def rejecting_gateway(gateway):
    gateway.fail_with = GatewayRejectedError("MTN Mobile Money rejected the request: PAYER_NOT_FOUND", status_code=400)
    return gateway
