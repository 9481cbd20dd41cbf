"""
Module: retail_kernel.selectors.cash_drawer_selector
Responsibility: Read-only access to drawer sessions and their cash movements.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Failure modes:
    - Returns None or an empty list when nothing matches.
    - InvalidDateRangeError when a window ends before it starts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from retail_kernel.models.cash_drawer import (
    CashDrawerSession,
    CashMovement,
    CashMovementType,
    CashSessionStatus,
)
from retail_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class CashMovementDTO:
    id: UUID
    session_id: UUID
    movement_type: CashMovementType
    amount: Decimal
    movement_date: datetime
    reason: str | None
    approved_by_id: int | None


@dataclass(frozen=True)
class CashSessionDTO:
    """Data transfer object for a drawer session."""

    id: UUID
    cashier_id: int
    till_id: str | None
    status: CashSessionStatus
    opened_at: datetime
    closed_at: datetime | None
    opening_float: Decimal
    opening_denominations: dict | None
    cash_sales: Decimal | None
    cash_paid_out: Decimal | None
    cash_movements: Decimal | None
    expected_cash: Decimal | None
    actual_cash: Decimal | None
    variance: Decimal | None
    variance_tier: str | None
    variance_severity: str | None
    closing_denominations: dict | None
    variance_reason: str | None
    approved_by_id: int | None
    requires_investigation: bool
    requires_incident_report: bool
    transaction_count: int
    refund_count: int

    @property
    def is_open(self) -> bool:
        return self.status == CashSessionStatus.OPEN


class CashDrawerSelector(BaseSelector[CashDrawerSession]):
    """Selector for drawer session queries."""

    def __init__(self, session: Session):
        super().__init__(session)

    @staticmethod
    def _to_dto(row: CashDrawerSession) -> CashSessionDTO:
        return CashSessionDTO(
            id=row.id,
            cashier_id=row.cashier_id,
            till_id=row.till_id,
            status=CashSessionStatus(row.status),
            opened_at=row.opened_at,
            closed_at=row.closed_at,
            opening_float=row.opening_float,
            opening_denominations=row.opening_denominations,
            cash_sales=row.cash_sales,
            cash_paid_out=row.cash_paid_out,
            cash_movements=row.cash_movements,
            expected_cash=row.expected_cash,
            actual_cash=row.actual_cash,
            variance=row.variance,
            variance_tier=row.variance_tier,
            variance_severity=row.variance_severity,
            closing_denominations=row.closing_denominations,
            variance_reason=row.variance_reason,
            approved_by_id=row.approved_by_id,
            requires_investigation=row.requires_investigation,
            requires_incident_report=row.requires_incident_report,
            transaction_count=row.transaction_count,
            refund_count=row.refund_count,
        )

    def get_session(self, session_id: UUID) -> CashSessionDTO | None:
        row = self.session.get(CashDrawerSession, session_id)
        return self._to_dto(row) if row is not None else None

    def get_active_session(self, cashier_id: int) -> CashSessionDTO | None:
        """The cashier's Open session, if any."""
        row = self.session.execute(
            select(CashDrawerSession).where(
                CashDrawerSession.cashier_id == cashier_id,
                CashDrawerSession.status == CashSessionStatus.OPEN.value,
            )
        ).scalars().first()
        return self._to_dto(row) if row is not None else None

    def get_session_history(
        self, cashier_id: int, start: datetime, end: datetime
    ) -> list[CashSessionDTO]:
        """Sessions a cashier opened in the window, most recent first."""
        self._check_range(start, end)
        rows = self.session.execute(
            select(CashDrawerSession)
            .where(
                CashDrawerSession.cashier_id == cashier_id,
                CashDrawerSession.opened_at >= start,
                CashDrawerSession.opened_at <= end,
            )
            .order_by(CashDrawerSession.opened_at.desc())
        ).scalars().all()
        return [self._to_dto(r) for r in rows]

    def get_reconciled_sessions(
        self,
        start: datetime,
        end: datetime,
        cashier_id: int | None = None,
    ) -> list[CashSessionDTO]:
        """Sessions reconciled in the window, most recent close first."""
        self._check_range(start, end)
        query = (
            select(CashDrawerSession)
            .where(
                CashDrawerSession.status == CashSessionStatus.RECONCILED.value,
                CashDrawerSession.closed_at >= start,
                CashDrawerSession.closed_at <= end,
            )
            .order_by(CashDrawerSession.closed_at.desc())
        )
        if cashier_id is not None:
            query = query.where(CashDrawerSession.cashier_id == cashier_id)
        rows = self.session.execute(query).scalars().all()
        return [self._to_dto(r) for r in rows]

    def get_movements(self, session_id: UUID) -> list[CashMovementDTO]:
        rows = self.session.execute(
            select(CashMovement)
            .where(CashMovement.session_id == session_id)
            .order_by(CashMovement.movement_date)
        ).scalars().all()
        return [
            CashMovementDTO(
                id=r.id,
                session_id=r.session_id,
                movement_type=CashMovementType(r.movement_type),
                amount=r.amount,
                movement_date=r.movement_date,
                reason=r.reason,
                approved_by_id=r.approved_by_id,
            )
            for r in rows
        ]

    def get_movement_total(self, session_id: UUID) -> Decimal:
        """Signed sum of the session's cash movements."""
        total = self.session.execute(
            select(func.sum(CashMovement.amount)).where(CashMovement.session_id == session_id)
        ).scalar_one()
        return Decimal(total or 0).quantize(Decimal("0.01"))
