from flask_login import UserMixin

from servicehub.extensions import db
from servicehub.models.base import PKType, TimestampMixin


class UserRole:
    SEEKER = "seeker"
    PROVIDER = "provider"
    ADMIN = "admin"

    SELF_REGISTRABLE = (SEEKER, PROVIDER)


class User(UserMixin, TimestampMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(16), nullable=False, index=True, default="")
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(24), nullable=False, index=True)
    is_active_user = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)

    seeker_bookings = db.relationship(
        "Booking", back_populates="seeker", lazy="dynamic", foreign_keys="Booking.seeker_id"
    )
    provider_bookings = db.relationship(
        "Booking", back_populates="provider", lazy="dynamic", foreign_keys="Booking.provider_id"
    )
    notifications = db.relationship("Notification", back_populates="user", lazy="dynamic")
    wallet = db.relationship("Wallet", back_populates="provider", uselist=False)
