from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.config import Config
from storefront.errors import UnauthorizedError, ValidationError
from storefront.models import User, UserRole
from storefront.observability import increment_counter, record_event
from storefront.security import create_access_token, revoke_token
from storefront.validators import is_valid_phone, sanitize_text, validate_registration


class AuthService:
    """Registration, login and profile management for storefront users."""

    PROFILE_FIELDS = ("username", "phone", "address", "avatar")

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def register(self, payload: Mapping[str, Any]) -> Tuple[User, str]:
        errors = validate_registration(payload, self.config.PASSWORD_MIN_LENGTH)
        if errors:
            raise ValidationError(errors)

        username = sanitize_text(payload["username"])
        email = payload["email"].strip().lower()

        if self.db.query(User).filter(func.lower(User.email) == email).first():
            raise ValidationError({"email": "Email is already registered"})
        if self.db.query(User).filter_by(username=username).first():
            raise ValidationError({"username": "Username is already taken"})

        user = User(
            username=username,
            email=email,
            role=UserRole.CUSTOMER,
            phone=payload.get("phone") or None,
            address=sanitize_text(payload.get("address")) or None,
        )
        user.passwordHash = generate_password_hash(payload["password"])
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        increment_counter("auth_registrations_total")
        record_event("user_registered", {"user_id": user.userID})
        self.logger.info("User %s registered", user.userID)
        return user, create_access_token(user)

    def login(self, email: Optional[str], password: Optional[str]) -> Tuple[User, str]:
        if not email or not password:
            raise ValidationError(
                {
                    key: f"{key} is required"
                    for key, value in (("email", email), ("password", password))
                    if not value
                }
            )
        if not isinstance(email, str) or not isinstance(password, str):
            raise ValidationError(
                {
                    key: f"{key} must be a string"
                    for key, value in (("email", email), ("password", password))
                    if not isinstance(value, str)
                }
            )

        user = self.db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
        if user is None or not check_password_hash(user.passwordHash, password):
            increment_counter("auth_login_failures_total", labels={"reason": "credentials"})
            self.logger.info("Failed login attempt for %s", email)
            raise UnauthorizedError("Invalid email or password")
        if not user.is_active:
            increment_counter("auth_login_failures_total", labels={"reason": "inactive"})
            raise UnauthorizedError("Account has been deactivated")

        increment_counter("auth_logins_total")
        self.logger.info("User %s logged in", user.userID)
        return user, create_access_token(user)

    def update_profile(self, user: User, payload: Mapping[str, Any]) -> User:
        errors: Dict[str, str] = {}
        username = payload.get("username")
        if username is not None:
            username = sanitize_text(username)
            if not username:
                errors["username"] = "Username cannot be empty"
            elif (
                self.db.query(User)
                .filter(User.username == username, User.userID != user.userID)
                .first()
            ):
                errors["username"] = "Username is already taken"
        phone = payload.get("phone")
        if phone and not is_valid_phone(phone):
            errors["phone"] = "Please provide a valid phone number"
        if errors:
            raise ValidationError(errors)

        if username is not None:
            user.username = username
        if "phone" in payload:
            user.phone = phone or None
        if "address" in payload:
            user.address = sanitize_text(payload.get("address")) or None
        if "avatar" in payload:
            user.avatar = payload.get("avatar") or None

        self.db.commit()
        self.db.refresh(user)
        self.logger.info("Profile updated for user %s", user.userID)
        return user

    def change_password(self, user: User, current_password: Optional[str], new_password: Optional[str]) -> None:
        if not current_password or not new_password:
            raise ValidationError({"password": "Current and new password are required"})
        if not isinstance(current_password, str) or not isinstance(new_password, str):
            raise ValidationError({"password": "Passwords must be strings"})
        if not check_password_hash(user.passwordHash, current_password):
            raise ValidationError({"current_password": "Current password is incorrect"})
        if len(new_password) < self.config.PASSWORD_MIN_LENGTH:
            raise ValidationError(
                {"new_password": f"Password must be at least {self.config.PASSWORD_MIN_LENGTH} characters"}
            )

        user.passwordHash = generate_password_hash(new_password)
        self.db.commit()
        increment_counter("auth_password_changes_total")
        self.logger.info("Password changed for user %s", user.userID)

    def logout(self, claims: Mapping[str, Any]) -> None:
        revoke_token(dict(claims))
        increment_counter("auth_logouts_total")

    def refresh(self, user: User, claims: Mapping[str, Any]) -> str:
        """Issue a fresh token and revoke the one presented."""
        token = create_access_token(user)
        revoke_token(dict(claims))
        return token
