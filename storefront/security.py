"""JWT issuance/verification and the route guards built on top of it."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from threading import Lock
from typing import Any, Callable, Dict, Optional

from flask import g, request
from jose import JWTError, jwt

from storefront.config import Config
from storefront.database import get_db
from storefront.errors import ForbiddenError, UnauthorizedError
from storefront.models import User, UserRole

logger = logging.getLogger(__name__)


class TokenBlacklist:
    """Revoked token ids. Process-local; entries live until the token would have expired."""

    _revoked: Dict[str, float] = {}
    _lock = Lock()

    @classmethod
    def add(cls, jti: str, expires_at: float) -> None:
        with cls._lock:
            cls._revoked[jti] = expires_at
            cls._purge_expired()

    @classmethod
    def is_revoked(cls, jti: str) -> bool:
        with cls._lock:
            return jti in cls._revoked

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._revoked.clear()

    @classmethod
    def _purge_expired(cls) -> None:
        now = datetime.now(timezone.utc).timestamp()
        for jti in [key for key, exp in cls._revoked.items() if exp < now]:
            del cls._revoked[jti]


def create_access_token(user: User, expires_in: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.userID),
        "role": UserRole(user.role).value,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in or Config.JWT_EXPIRES_SECONDS),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Return the claims of a valid, unrevoked token or raise UnauthorizedError."""
    try:
        claims = jwt.decode(token, Config.JWT_SECRET, algorithms=[Config.JWT_ALGORITHM])
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise UnauthorizedError("Not authorized, token invalid or expired") from exc

    if not claims.get("sub") or not claims.get("jti"):
        raise UnauthorizedError("Not authorized, token invalid or expired")
    if TokenBlacklist.is_revoked(claims["jti"]):
        raise UnauthorizedError("Not authorized, token has been revoked")
    return claims


def revoke_token(claims: Dict[str, Any]) -> None:
    TokenBlacklist.add(claims["jti"], float(claims.get("exp", 0)))


def extract_bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _load_user(claims: Dict[str, Any]) -> Optional[User]:
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        return None
    return get_db().query(User).filter_by(userID=user_id).first()


def authenticate_request() -> User:
    """Resolve the bearer token to an active user, storing both on ``flask.g``."""
    token = extract_bearer_token()
    if not token:
        raise UnauthorizedError("Not authorized, no token provided")

    claims = decode_token(token)
    user = _load_user(claims)
    if user is None:
        raise UnauthorizedError("Not authorized, user no longer exists")
    if not user.is_active:
        raise ForbiddenError("Account has been deactivated")

    g.current_user = user
    g.token_claims = claims
    return user


def login_required(view: Callable) -> Callable:
    @wraps(view)
    def wrapper(*args, **kwargs):
        authenticate_request()
        return view(*args, **kwargs)

    return wrapper


def roles_required(*roles: UserRole | str) -> Callable[[Callable], Callable]:
    allowed = {UserRole(role) for role in roles}

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = getattr(g, "current_user", None) or authenticate_request()
            if UserRole(user.role) not in allowed:
                logger.warning("User %s denied access to %s", user.userID, request.path)
                raise ForbiddenError(f"Role '{UserRole(user.role).value}' is not authorized to access this resource")
            return view(*args, **kwargs)

        return wrapper

    return decorator


admin_required = roles_required(UserRole.ADMIN)


def optional_auth(view: Callable) -> Callable:
    """Attach the user when a valid token is present; never rejects the request."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if extract_bearer_token():
            try:
                authenticate_request()
            except (UnauthorizedError, ForbiddenError):
                g.current_user = None
        return view(*args, **kwargs)

    return wrapper


def ensure_owner_or_admin(owner_id: int, user: Optional[User] = None) -> None:
    user = user or getattr(g, "current_user", None)
    if user is None:
        raise UnauthorizedError()
    if user.userID != owner_id and not user.is_admin:
        raise ForbiddenError("Not authorized to access this resource")
