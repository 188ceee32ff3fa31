from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime
from sqlalchemy import Enum as SAEnum
from sqlmodel import Column, Field, SQLModel, String


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Lower-case and strip an email so lookups are case-insensitive."""
    return email.strip().lower()


class Role(str, Enum):
    """Role certified in tokens. Authorisation decisions happen outside the core.

    Attributes:
        ADMIN: Administrative identity.
        USER: Standard identity.
    """

    ADMIN = "admin"
    USER = "user"


class Identity(SQLModel, table=True):
    """A user identity owned by the credential store.

    Attributes:
        id: Stable subject id carried in every token's ``sub`` claim.
        email: Unique, lower-cased login email.
        hashed_password: Output of the injected password hasher.
        role: Role certified in issued tokens.
        is_active: Disabled identities cannot log in or refresh.
        email_verified: Set once an email-verification token is redeemed.
        profile: Free-form profile fields supplied at registration.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last credential or flag change.
    """

    __tablename__ = "identities"

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        primary_key=True,
        description="Stable subject id.",
    )
    email: str = Field(
        sa_column=Column(String, unique=True, index=True, nullable=False),
        description="Unique, lower-cased email address used for login.",
    )
    hashed_password: str = Field(max_length=255, description="Password hash.")
    role: Role = Field(
        default=Role.USER,
        sa_column=Column(SAEnum(Role, name="role"), nullable=False, default=Role.USER),
    )
    is_active: bool = Field(default=True)
    email_verified: bool = Field(default=False)
    profile: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    __table_args__ = ({"extend_existing": True},)
