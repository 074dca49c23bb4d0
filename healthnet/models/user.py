# healthnet/models/user.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Local mirror of an identity-provider account.

    Identity:
      - id: MUST match the "sub" claim of the access token

    Role:
      - "user" | "admin"

    Passwords and sessions are owned by the identity provider. We only
    mirror identity, display name and application role so carts, orders
    and payments can be attributed.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches the access token subject",
    )

    email: str = Field(
        unique=True,
        index=True,
    )

    name: str = Field(
        max_length=50,
        description="Display name; first part of email by default",
    )

    # Application role
    role: str = Field(
        default="user",
        index=True,
        description="Application role: user | admin",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
