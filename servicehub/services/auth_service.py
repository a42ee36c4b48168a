import re
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from servicehub.errors import AppError, ConflictError
from servicehub.extensions import bcrypt, db
from servicehub.models import User, UserRole

CAMEROON_PHONE = re.compile(r"^(?:\+?237)?([26]\d{8})$")


def normalize_phone(phone):
    """Return the 9-digit local part of a Cameroon mobile number, or None."""
    compact = re.sub(r"[\s\-().]", "", phone or "")
    match = CAMEROON_PHONE.fullmatch(compact)
    return match.group(1) if match else None


class AuthService:
    @staticmethod
    def register_user(full_name, email, password, role, phone):
        if role not in UserRole.SELF_REGISTRABLE:
            raise AppError("Invalid role.", 400)

        normalized_email = (email or "").strip().lower()
        normalized_phone = normalize_phone(phone)
        if not normalized_phone:
            raise AppError("Phone number must be a valid Cameroon number (+237XXXXXXXXX).", 400)
        if not (full_name or "").strip() or not normalized_email or not password:
            raise AppError("Name, email, phone, and password are required.", 400)
        if len(password) < 8:
            raise AppError("Password must be at least 8 characters.", 400)

        if User.query.filter_by(email=normalized_email).first():
            raise ConflictError("Email already registered.")

        user = User(
            full_name=full_name.strip(),
            email=normalized_email,
            phone=normalized_phone,
            role=role,
            password_hash=bcrypt.generate_password_hash(password).decode("utf-8"),
        )
        try:
            db.session.add(user)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("Email already registered.") from exc
        return user

    @staticmethod
    def authenticate_user(email, password):
        user = User.query.filter_by(email=(email or "").strip().lower()).first()
        if not user:
            raise AppError("Invalid credentials.", 401)

        try:
            is_valid = bcrypt.check_password_hash(user.password_hash, password or "")
        except ValueError:
            is_valid = False

        if not is_valid:
            raise AppError("Invalid credentials.", 401)
        if not user.is_active_user:
            raise AppError("User account is inactive.", 403)
        user.last_login = datetime.now(timezone.utc)
        db.session.commit()
        return user
