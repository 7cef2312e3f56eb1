import uuid
from datetime import datetime

from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class User(SQLModel, table=True):
    """
    Persistent user profile.

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")

    Role:
      - "user" (buyer) | "admin"

    Buyers carry their commercial data (balance, approval) on the
    one-to-one Company row, see app.models.company.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    name: str = Field(
        max_length=100,
        description="Display name; first part of email by default",
    )

    phone: str | None = Field(
        default=None,
        max_length=20,
        description="Contact phone, used as billing contact phone",
    )

    # Application role (not Supabase RLS role)
    role: str = Field(
        default="user",
        index=True,
        description="Application role: user | admin",
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        description="Creation timestamp (UTC)",
    )
