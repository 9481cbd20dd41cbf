"""
Module: retail_kernel.models.cash_drawer
Responsibility: ORM persistence for cash drawer sessions (one per cashier
    shift) and the cash movements recorded against them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A session is created Open, written once more at reconciliation, and
      is immutable history afterwards (CashDrawerService refuses to touch
      a non-Open session).
    - At most one Open session per cashier (checked by CashDrawerService).
    - Movements reference their session by id only.

Audit relevance:
    Closed sessions keep expected and counted cash, the variance, its
    tier and severity, the count sheet, the stated reason and the
    approving manager.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import TrackedBase, UUIDString


class CashSessionStatus(str, Enum):
    """Drawer session lifecycle: Open -> Reconciled."""

    OPEN = "Open"
    RECONCILED = "Reconciled"


class CashMovementType(str, Enum):
    """Non-sale cash moving in or out of the drawer."""

    DROP = "Drop"  # cash removed to the safe
    LOAN = "Loan"  # change added to the drawer
    PETTY_CASH = "PettyCash"
    CORRECTION = "Correction"


class CashDrawerSession(TrackedBase):
    """
    One cashier shift at one drawer.

    Contract:
        opened_at/closed_at bound the payment window used for expected cash.
        Reconciliation columns are NULL while the session is Open.
    """

    __tablename__ = "cash_drawer_sessions"

    __table_args__ = (
        Index("idx_drawer_cashier_status", "cashier_id", "status"),
        Index("idx_drawer_closed_at", "closed_at"),
    )

    cashier_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    till_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[CashSessionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=CashSessionStatus.OPEN,
    )

    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    opening_float: Mapped[Decimal] = mapped_column(nullable=False)
    opening_denominations: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Filled at reconciliation
    cash_sales: Mapped[Decimal | None] = mapped_column(nullable=True)
    cash_paid_out: Mapped[Decimal | None] = mapped_column(nullable=True)
    cash_movements: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_cash: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_cash: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    variance_severity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    closing_denominations: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    variance_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    approved_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    requires_investigation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_incident_report: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<CashDrawerSession cashier={self.cashier_id} {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == CashSessionStatus.OPEN


class CashMovement(TrackedBase):
    """A signed amount moved in (+) or out (-) of an open drawer."""

    __tablename__ = "cash_movements"

    __table_args__ = (Index("idx_movement_session", "session_id"),)

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cash_drawer_sessions.id"),
        nullable=False,
    )

    movement_type: Mapped[CashMovementType] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    movement_date: Mapped[datetime] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    approved_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<CashMovement {self.movement_type} {self.amount}>"
