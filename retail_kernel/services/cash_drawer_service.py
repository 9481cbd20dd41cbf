"""
CashDrawerService -- drawer sessions, cash movements and reconciliation.

Responsibility:
    Opens a cashier's drawer session with its float, records non-sale cash
    movements, and closes the session by comparing counted cash with what
    the ledger says the drawer should hold.

Architecture position:
    Kernel > Services -- imperative shell.  Reads the cashier's cash
    payments through PaymentSelector, delegates all arithmetic and tiering
    to the pure CashVarianceCalculator, and performs exactly one write at
    reconciliation.  Owns the transaction boundary when ``auto_commit`` is
    True.

Invariants enforced:
    - expected = opening float + cash sales - cash paid out + movements,
      over the cashier's payments between opened_at and the close.
    - variance = actual - expected.
    - |variance| above the manager approval threshold without an approving
      manager is NOT an error: reconcile() returns success=False with a
      "manager approval required" message and writes nothing.
    - A Moderate or Severe variance without a stated reason is likewise
      rejected with success=False, even when a manager approves.
    - The session row is locked (SELECT ... FOR UPDATE) before a close or a
      movement so concurrent tills see the committed status.
    - A session is Open until reconciled, then immutable.  At most one Open
      session per cashier.

Failure modes:
    - InvalidActorError / InvalidAmountError / InvalidDenominationError /
      DenominationMismatchError on bad input, before any write.
    - CashSessionAlreadyOpenError, CashSessionNotFoundError,
      CashSessionNotOpenError, ManagerApprovalRequiredError on movements.
    - reconcile() reports a missing or closed session as success=False.

Audit relevance:
    Closed sessions keep the full expected-cash breakdown, the count sheet,
    the variance tier and severity, the stated reason and the approving
    manager.  Every close logs cash_drawer_reconciled (or _rejected).
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_engines.variance import (
    CashierVarianceSummary,
    CashVarianceCalculator,
    ExpectedCash,
    VarianceSeverity,
    VarianceTier,
)
from retail_kernel.domain.clock import Clock
from retail_kernel.domain.policies import ReconciliationPolicy
from retail_kernel.domain.values import CENT, ZERO, round_money
from retail_kernel.exceptions import (
    CashSessionAlreadyOpenError,
    CashSessionNotFoundError,
    CashSessionNotOpenError,
    DenominationMismatchError,
    InvalidAmountError,
    ManagerApprovalRequiredError,
)
from retail_kernel.logging_config import LogContext, get_logger
from retail_kernel.models.cash_drawer import (
    CashDrawerSession,
    CashMovement,
    CashMovementType,
    CashSessionStatus,
)
from retail_kernel.selectors.cash_drawer_selector import (
    CashDrawerSelector,
    CashMovementDTO,
    CashSessionDTO,
)
from retail_kernel.selectors.payment_selector import PaymentSelector
from retail_kernel.services.base import BaseService, check_actor, check_choice

logger = get_logger("services.cash_drawer")

Denominations = Mapping[Decimal | str, int]


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of closing a drawer.

    success=False means nothing was written; ``messages`` says why.
    """

    success: bool
    session_id: UUID | None
    messages: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    tier: VarianceTier | None = None
    severity: VarianceSeverity | None = None
    expected: ExpectedCash | None = None
    actual_cash: Decimal | None = None
    variance: Decimal | None = None
    variance_percentage: Decimal = ZERO
    requires_manager_approval: bool = False
    requires_investigation: bool = False
    requires_incident_report: bool = False
    amount_to_banking: Decimal | None = None
    approved_by_id: int | None = None

    @property
    def expected_cash(self) -> Decimal | None:
        return self.expected.expected_cash if self.expected is not None else None


@dataclass(frozen=True)
class PreReconciliationCheck:
    """Warnings raised before a close.  Never blocks the close by itself."""

    warnings: tuple[str, ...]
    requires_manager_approval: bool
    expected: ExpectedCash


def _serialize_denominations(breakdown: Denominations | None) -> dict[str, int] | None:
    if breakdown is None:
        return None
    return {str(round_money(Decimal(d))): int(c) for d, c in breakdown.items()}


class CashDrawerService(BaseService):
    """
    Orchestrates drawer sessions for cashiers.

    Contract:
        open_session, record_cash_movement and a successful reconcile each
        commit (auto_commit) or roll back and re-raise.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReconciliationPolicy | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock)
        self._policy = policy or ReconciliationPolicy()
        self._calculator = CashVarianceCalculator(self._policy)
        self._drawers = CashDrawerSelector(session)
        self._payments = PaymentSelector(session)
        self._auto_commit = auto_commit

    @property
    def policy(self) -> ReconciliationPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open_session(
        self,
        cashier_id: int,
        opening_float: Decimal,
        denominations: Denominations | None = None,
        till_id: str | None = None,
    ) -> CashSessionDTO:
        """
        Start a shift.

        Raises:
            InvalidActorError: cashier_id <= 0.
            InvalidAmountError: opening_float < 0.
            DenominationMismatchError: count sheet does not add up to the float.
            CashSessionAlreadyOpenError: the cashier has an Open session.
        """
        check_actor("cashier", cashier_id)
        if opening_float < 0:
            raise InvalidAmountError("opening_float", opening_float, "must not be negative")
        opening = round_money(opening_float)
        self._check_denominations(opening, denominations)

        with LogContext.bind(actor_id=str(cashier_id)):
            try:
                active = self._drawers.get_active_session(cashier_id)
                if active is not None:
                    raise CashSessionAlreadyOpenError(cashier_id, str(active.id))

                now = self.clock.now()
                row = CashDrawerSession(
                    cashier_id=cashier_id,
                    till_id=till_id,
                    status=CashSessionStatus.OPEN.value,
                    opened_at=now,
                    opening_float=opening,
                    opening_denominations=_serialize_denominations(denominations),
                    created_at=now,
                    updated_at=now,
                    created_by_id=cashier_id,
                )
                self.session.add(row)
                self.session.flush()
                dto = self._drawers.get_session(row.id)
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "cash_drawer_opened",
                    extra={
                        "session_id": str(row.id),
                        "opening_float": str(opening),
                        "till_id": till_id,
                    },
                )
                return dto
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error("cash_drawer_open_failed", exc_info=True)
                raise

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def record_cash_movement(
        self,
        session_id: UUID,
        movement_type: CashMovementType | str,
        amount: Decimal,
        actor_id: int,
        reason: str | None = None,
        approved_by: int | None = None,
    ) -> CashMovementDTO:
        """
        Record cash added (+) to or removed (-) from an open drawer.

        Raises:
            InvalidAmountError: amount is zero.
            InvalidChoiceError: unknown movement type.
            ManagerApprovalRequiredError: |amount| above the large-movement
                threshold with no approving manager.
            CashSessionNotFoundError / CashSessionNotOpenError.
        """
        kind = check_choice(CashMovementType, "movement type", movement_type)
        check_actor("actor", actor_id)
        signed = round_money(amount)
        if signed == ZERO:
            raise InvalidAmountError("movement amount", amount, "must not be zero")
        if abs(signed) > self._policy.large_cash_movement_threshold and approved_by is None:
            raise ManagerApprovalRequiredError(
                f"{kind.value} movement", abs(signed), self._policy.large_cash_movement_threshold
            )

        with LogContext.bind(actor_id=str(actor_id), session_id=str(session_id)):
            try:
                row = self._open_row(session_id)
                now = self.clock.now()
                movement = CashMovement(
                    session_id=row.id,
                    movement_type=kind.value,
                    amount=signed,
                    movement_date=now,
                    reason=reason,
                    approved_by_id=approved_by,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor_id,
                )
                self.session.add(movement)
                self.session.flush()
                dto = CashMovementDTO(
                    id=movement.id,
                    session_id=row.id,
                    movement_type=kind,
                    amount=signed,
                    movement_date=now,
                    reason=reason,
                    approved_by_id=approved_by,
                )
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "cash_movement_recorded",
                    extra={"movement_type": kind.value, "amount": str(signed)},
                )
                return dto
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error("cash_movement_failed", exc_info=True)
                raise

    # ------------------------------------------------------------------
    # Expected cash and pre-close checks (read-only)
    # ------------------------------------------------------------------

    def calculate_expected_cash(
        self, session_id: UUID, as_of: datetime | None = None
    ) -> ExpectedCash:
        """
        What the drawer should hold at ``as_of`` (default: now).

        Raises:
            CashSessionNotFoundError: no such session.
        """
        row = self._get_row(session_id)
        end = as_of or row.closed_at or self.clock.now()
        figures = self._payments.get_cash_figures(row.cashier_id, row.opened_at, end)
        return self._calculator.expected_cash(
            opening_float=row.opening_float,
            cash_sales=figures.cash_sales,
            cash_paid_out=figures.cash_paid_out,
            cash_movements=self._drawers.get_movement_total(row.id),
            transaction_count=figures.transaction_count,
            refund_count=figures.refund_count,
        )

    def validate_before_reconcile(
        self,
        session_id: UUID,
        actual_cash: Decimal,
        denominations: Denominations | None = None,
    ) -> PreReconciliationCheck:
        """
        Sanity checks a supervisor should see before closing.

        Raises:
            CashSessionNotFoundError: no such session.
        """
        row = self._get_row(session_id)
        now = self.clock.now()
        expected = self.calculate_expected_cash(session_id, as_of=now)
        warnings: list[str] = []
        requires_approval = False

        open_for = now - row.opened_at
        if open_for > timedelta(hours=self._policy.max_session_hours):
            hours = open_for.total_seconds() / 3600
            warnings.append(
                f"Session open for {hours:.1f} hours "
                f"(more than {self._policy.max_session_hours})"
            )
        if expected.transaction_count > self._policy.max_session_transactions:
            warnings.append(
                f"Session has {expected.transaction_count} transactions "
                f"(more than {self._policy.max_session_transactions})"
            )
        if expected.expected_cash > self._policy.large_expected_cash:
            requires_approval = True
            warnings.append(
                f"Expected cash {expected.expected_cash} exceeds "
                f"{self._policy.large_expected_cash}; manager approval recommended"
            )
        if denominations is not None:
            counted = self._calculator.denomination_total(denominations)
            if abs(counted - round_money(actual_cash)) > CENT:
                warnings.append(
                    f"Denomination total {counted} does not match counted cash "
                    f"{round_money(actual_cash)}"
                )

        return PreReconciliationCheck(
            warnings=tuple(warnings),
            requires_manager_approval=requires_approval,
            expected=expected,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        session_id: UUID,
        actual_cash: Decimal,
        denominations: Denominations | None = None,
        variance_reason: str | None = None,
        approving_manager_id: int | None = None,
    ) -> ReconciliationResult:
        """
        Close a drawer against its counted cash.

        Postconditions:
            - success=True: session is Reconciled with every figure stored.
            - success=False: nothing written; messages explain why.

        Raises:
            InvalidAmountError: actual_cash < 0.
            InvalidActorError: approving_manager_id given but not positive.
            DenominationMismatchError: count sheet does not add up.
        """
        if actual_cash < 0:
            raise InvalidAmountError("actual_cash", actual_cash, "must not be negative")
        if approving_manager_id is not None:
            check_actor("manager", approving_manager_id)
        actual = round_money(actual_cash)
        self._check_denominations(actual, denominations)

        with LogContext.bind(correlation_id=str(uuid4()), session_id=str(session_id)):
            t0 = time.monotonic()
            row = self._lock_row(session_id)
            if row is None:
                logger.warning("cash_drawer_reconcile_rejected", extra={"reason": "not_found"})
                return ReconciliationResult(
                    success=False,
                    session_id=session_id,
                    messages=(f"Cash drawer session {session_id} not found",),
                )
            if row.status != CashSessionStatus.OPEN.value:
                status = row.status
                if self._auto_commit:
                    self.session.rollback()
                logger.warning(
                    "cash_drawer_reconcile_rejected",
                    extra={"reason": "not_open", "status": status},
                )
                return ReconciliationResult(
                    success=False,
                    session_id=session_id,
                    messages=(f"Cash drawer session {session_id} is {status}, not Open",),
                )

            now = self.clock.now()
            expected = self.calculate_expected_cash(session_id, as_of=now)
            evaluation = self._calculator.evaluate(
                expected, actual, manager_approved=approving_manager_id is not None
            )
            amount_to_banking = actual - row.opening_float

            rejection: tuple[str, str] | None = None
            if evaluation.requires_manager_approval and approving_manager_id is None:
                rejection = (
                    "manager_approval_required",
                    f"Variance of {evaluation.variance} exceeds "
                    f"{self._policy.manager_approval_threshold}: manager approval required",
                )
            elif evaluation.requires_investigation and not (variance_reason or "").strip():
                rejection = (
                    "variance_reason_required",
                    f"{evaluation.severity.value} variance of {evaluation.variance} "
                    f"requires a recorded reason",
                )
            if rejection is not None:
                if self._auto_commit:
                    self.session.rollback()
                reason, message = rejection
                logger.warning(
                    "cash_drawer_reconcile_rejected",
                    extra={"reason": reason, "variance": str(evaluation.variance)},
                )
                return ReconciliationResult(
                    success=False,
                    session_id=session_id,
                    messages=(message,),
                    tier=evaluation.tier,
                    severity=evaluation.severity,
                    expected=expected,
                    actual_cash=actual,
                    variance=evaluation.variance,
                    variance_percentage=evaluation.variance_percentage,
                    requires_manager_approval=evaluation.requires_manager_approval,
                    requires_investigation=evaluation.requires_investigation,
                    requires_incident_report=evaluation.requires_incident_report,
                    amount_to_banking=amount_to_banking,
                )

            warnings: list[str] = []
            if evaluation.requires_incident_report:
                warnings.append(f"Incident report required for variance of {evaluation.variance}")

            try:
                row.status = CashSessionStatus.RECONCILED.value
                row.closed_at = now
                row.cash_sales = expected.cash_sales
                row.cash_paid_out = expected.cash_paid_out
                row.cash_movements = expected.cash_movements
                row.expected_cash = expected.expected_cash
                row.actual_cash = actual
                row.variance = evaluation.variance
                row.variance_tier = evaluation.tier.value
                row.variance_severity = evaluation.severity.value
                row.closing_denominations = _serialize_denominations(denominations)
                row.variance_reason = variance_reason
                row.approved_by_id = approving_manager_id
                row.requires_investigation = evaluation.requires_investigation
                row.requires_incident_report = evaluation.requires_incident_report
                row.transaction_count = expected.transaction_count
                row.refund_count = expected.refund_count
                row.updated_at = now
                row.updated_by_id = approving_manager_id or row.cashier_id
                self.session.flush()
                if self._auto_commit:
                    self.session.commit()
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error("cash_drawer_reconcile_failed", exc_info=True)
                raise

            logger.info(
                "cash_drawer_reconciled",
                extra={
                    "expected_cash": str(expected.expected_cash),
                    "actual_cash": str(actual),
                    "variance": str(evaluation.variance),
                    "tier": evaluation.tier.value,
                    "severity": evaluation.severity.value,
                    "approved_by_id": approving_manager_id,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return ReconciliationResult(
                success=True,
                session_id=session_id,
                messages=(f"Drawer reconciled: {evaluation.tier.value}",),
                warnings=tuple(warnings),
                tier=evaluation.tier,
                severity=evaluation.severity,
                expected=expected,
                actual_cash=actual,
                variance=evaluation.variance,
                variance_percentage=evaluation.variance_percentage,
                requires_manager_approval=evaluation.requires_manager_approval,
                requires_investigation=evaluation.requires_investigation,
                requires_incident_report=evaluation.requires_incident_report,
                amount_to_banking=amount_to_banking,
                approved_by_id=approving_manager_id,
            )

    # ------------------------------------------------------------------
    # Reporting (read-only)
    # ------------------------------------------------------------------

    def get_variance_summary(
        self, cashier_id: int, start: datetime, end: datetime
    ) -> CashierVarianceSummary:
        sessions = self._drawers.get_reconciled_sessions(start, end, cashier_id=cashier_id)
        return self._calculator.summarize(
            cashier_id, start, end, (s.variance for s in sessions if s.variance is not None)
        )

    def get_variance_alerts(self, start: datetime, end: datetime) -> list[CashSessionDTO]:
        """Closed sessions with |variance| above the acceptable variance, largest first."""
        sessions = [
            s
            for s in self._drawers.get_reconciled_sessions(start, end)
            if s.variance is not None and abs(s.variance) > self._policy.acceptable_variance
        ]
        return sorted(sessions, key=lambda s: abs(s.variance), reverse=True)

    def get_session_history(
        self, cashier_id: int, start: datetime, end: datetime
    ) -> list[CashSessionDTO]:
        return self._drawers.get_session_history(cashier_id, start, end)

    def get_active_session(self, cashier_id: int) -> CashSessionDTO | None:
        return self._drawers.get_active_session(cashier_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_denominations(self, declared: Decimal, breakdown: Denominations | None) -> None:
        if breakdown is None:
            return
        counted = self._calculator.denomination_total(breakdown)
        if abs(counted - declared) > CENT:
            raise DenominationMismatchError(declared, counted)

    def _get_row(self, session_id: UUID) -> CashDrawerSession:
        row = self.session.get(CashDrawerSession, session_id)
        if row is None:
            raise CashSessionNotFoundError(str(session_id))
        return row

    def _lock_row(self, session_id: UUID) -> CashDrawerSession | None:
        return self.session.execute(
            select(CashDrawerSession)
            .where(CashDrawerSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _open_row(self, session_id: UUID) -> CashDrawerSession:
        row = self._lock_row(session_id)
        if row is None:
            raise CashSessionNotFoundError(str(session_id))
        if row.status != CashSessionStatus.OPEN.value:
            raise CashSessionNotOpenError(str(session_id), row.status)
        return row
