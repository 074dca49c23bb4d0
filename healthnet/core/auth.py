# healthnet/core/auth.py
"""
Bearer token authentication.

HealthNet does not issue credentials. Customers and pharmacy staff sign in
with the external identity provider, which hands out HS256 access tokens
signed with the shared JWT_SECRET. Every request carries one of those
tokens; this module verifies it and maps its subject onto the local
`users` table, which mirrors the provider's accounts (id, email, role).

Two roles exist:
  - user:  customers (cart, checkout, payments, own orders)
  - admin: pharmacy staff (inventory, order status, delivery areas)

Roles are exclusive: admins cannot shop and customers cannot manage.
"""
import uuid
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.database import get_session
from healthnet.models.user import User
from healthnet.repositories.user_repo import UserRepository

settings = get_settings()
user_repo = UserRepository()

# auto_error=False: a missing header reaches require_auth, which answers
# with our own 401 instead of FastAPI's 403.
bearer_scheme = HTTPBearer(auto_error=False)

CUSTOMER_ROLE = "user"
ADMIN_ROLE = "admin"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify signature and expiry of a provider token and return its claims.

    The audience claim differs between provider environments and is not
    checked.
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise _unauthorized("Invalid or expired token")


def _default_name_from_email(email: str) -> str:
    return email.split("@", 1)[0][:50]


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User | None:
    """
    Local account behind the request's access token, or None without one.

    `sub` is the provider account id and becomes User.id. An account seen
    for the first time is mirrored locally as a customer; staff accounts
    are promoted to admin in the users table, never through the token.
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    email = payload.get("email")
    if not sub or not email:
        raise _unauthorized("Token missing sub/email")

    try:
        account_id = uuid.UUID(sub)
    except ValueError:
        raise _unauthorized("Invalid sub in token")

    user = user_repo.get_by_id(session, account_id)
    if user is not None:
        return user

    try:
        return user_repo.create(
            session,
            User(
                id=account_id,
                email=email,
                name=_default_name_from_email(email),
                role=CUSTOMER_ROLE,
            ),
        )
    except IntegrityError:
        # a parallel first request mirrored the account
        session.rollback()
        user = user_repo.get_by_id(session, account_id)
        if user is None:
            raise
        return user


def require_auth(user: User | None = Depends(get_current_user)) -> User:
    if user is None:
        raise _unauthorized("Authentication required")
    return user


def require_admin(user: User = Depends(require_auth)) -> User:
    """Pharmacy staff only; customers get 403."""
    if user.role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def require_user(user: User = Depends(require_auth)) -> User:
    """
    Customers only. Guards cart, checkout, payment and own-order routes;
    staff accounts get 403 there.
    """
    if user.role != CUSTOMER_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer access required",
        )
    return user
