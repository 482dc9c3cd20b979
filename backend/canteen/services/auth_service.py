# Overview: Service-layer operations for auth; password hashing and account creation.

"""
Authentication service

Passwords are hashed with bcrypt (cost factor 12). Session tokens are
handled separately in session_service.
"""

import re

import bcrypt

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import CustomerDetails, Outlet, User, Wallet
from ..models.auth import ROLES, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF
from canteen.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    default_code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    email: str,
    name: str,
    password: str,
    role: str = ROLE_CUSTOMER,
    outlet_id: int | None = None,
) -> User:
    """
    Create an account.

    Customers get their CustomerDetails row and an empty wallet. Staff and
    admins must be assigned to an existing outlet.

    Raises ValidationError for bad input and BusinessRuleViolation when the
    email is already registered.
    """
    email = (email or "").strip().lower()
    if not email or not name:
        raise ValidationError("email and name are required")
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}", code="INVALID_ROLE")

    if db.session.query(User).filter_by(email=email).first():
        raise BusinessRuleViolation("Email already registered", code="EMAIL_TAKEN")

    if role in (ROLE_STAFF, ROLE_ADMIN):
        if outlet_id is None:
            raise ValidationError("Staff must be assigned to an outlet", code="OUTLET_REQUIRED")
        if not db.session.get(Outlet, outlet_id):
            raise NotFoundError("Outlet not found", code="OUTLET_NOT_FOUND")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        outlet_id=outlet_id if role in (ROLE_STAFF, ROLE_ADMIN) else None,
    )
    db.session.add(user)
    db.session.flush()

    if role == ROLE_CUSTOMER:
        db.session.add(CustomerDetails(user_id=user.id, order_count=0))
        db.session.add(Wallet(customer_id=user.id, balance_paise=0))

    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Returns the active User when credentials match, else None.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
