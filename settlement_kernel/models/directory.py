"""
Module: settlement_kernel.models.directory
Responsibility: Local persistence for the company/user directory that the
    back office owns.  The settlement engine reads these rows only to take
    bundle snapshots and to filter listings by name or business number.
Architecture position: Kernel > Models.  May import from db/base.py only.

Non-goals:
    Generic CRUD for companies, drivers and addresses belongs to the wider
    back office; this module only defines the columns the engine reads.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UUIDString


class Company(TrackedBase):
    """
    A shipper or carrier.

    Contract:
        ``name``, ``business_number`` and ``ceo_name`` are copied into
        ``SettlementBundle.company_snapshot`` when a bundle is created.
        The bank fields serve as defaults for a bundle's payment info.
    """

    __tablename__ = "companies"

    __table_args__ = (
        Index("idx_company_name", "name"),
        Index("idx_company_business_number", "business_number"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    business_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    ceo_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bank_code: Mapped[str | None] = mapped_column(String(10), nullable=True)

    bank_account: Mapped[str | None] = mapped_column(String(50), nullable=True)

    bank_account_holder: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Company {self.name} ({self.business_number})>"


class Manager(TrackedBase):
    """A back-office user responsible for a bundle."""

    __tablename__ = "managers"

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    company_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Manager {self.name}>"
