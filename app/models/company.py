import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class Company(SQLModel, table=True):
    """
    Buyer company profile (one-to-one with a User).

    `balance` is the cached current value of the buyer's balance ledger;
    it is only ever changed by BalanceLedger together with a
    BalanceTransaction row.
    """

    __tablename__ = "companies"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        unique=True,
        index=True,
    )

    company_name: str = Field(max_length=255)
    tax_number: str | None = Field(default=None, max_length=20)
    tax_office: str | None = Field(default=None, max_length=100)

    address: str = Field(description="Street address")
    district: str | None = None
    city: str | None = None
    postal_code: str | None = Field(default=None, max_length=10)

    is_approved: bool = Field(default=False, index=True)
    approved_at: datetime | None = None

    balance: Decimal = Field(
        default=Decimal("0.00"),
        max_digits=12,
        decimal_places=2,
        description="Current account balance",
    )

    created_at: datetime = Field(default_factory=utcnow)

    @property
    def full_address(self) -> str:
        """One line each: street, district, city, postal code (blank lines keep positions)."""
        parts = [self.address, self.district, self.city, self.postal_code]
        return "\n".join(p or "" for p in parts).rstrip("\n")


class CustomerGroup(SQLModel, table=True):
    """
    Pricing group (e.g. "Dealers", "Wholesale").

    Members get group custom prices and, failing those, the group's
    flat discount percentage.
    """

    __tablename__ = "customer_groups"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    name: str = Field(max_length=100)

    discount_percentage: Decimal = Field(
        default=Decimal("0.00"),
        max_digits=5,
        decimal_places=2,
        ge=0,
        le=100,
    )

    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow)


class UserGroupLink(SQLModel, table=True):
    """Membership of a user in a customer group (many-to-many)."""

    __tablename__ = "user_groups"

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    group_id: uuid.UUID = Field(foreign_key="customer_groups.id", primary_key=True)
