"""
retail_engines.variance -- Cash drawer variance tiering.

Responsibility:
    Compute expected cash for a shift, the counted-versus-expected
    variance, its magnitude band (severity), and the policy tier that
    decides whether a manager must sign the close.  Also totals
    denomination counts and aggregates a cashier's variance history.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by CashDrawerService.

Invariants enforced:
    - expected = opening float + cash sales - cash paid out + movements.
    - variance = actual - expected (positive means the drawer is over).
    - Severity bands are fixed: < 0.01 Balanced, <= 1.00 Acceptable,
      <= 10.00 Minor, <= 100.00 Moderate, otherwise Severe.
    - Tier comes from the ReconciliationPolicy thresholds and is
      independent of the severity bands.

Failure modes:
    - InvalidDenominationError for an unknown denomination or negative count.

Usage:
    calculator = CashVarianceCalculator(ReconciliationPolicy())
    expected = calculator.expected_cash(
        opening_float=Decimal("500.00"), cash_sales=Decimal("300.00"),
        cash_paid_out=Decimal("0.00"),
    )
    result = calculator.evaluate(expected, actual_cash=Decimal("805.00"))
    print(result.variance, result.tier, result.severity)  # 5.00 Acceptable Minor
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from retail_kernel.domain.policies import ReconciliationPolicy
from retail_kernel.domain.values import CENT, HUNDRED, ZERO, round_money
from retail_kernel.exceptions import InvalidDenominationError
from retail_kernel.logging_config import get_logger

logger = get_logger("engines.variance")

# South African Rand notes and coins, largest first
DENOMINATIONS: tuple[Decimal, ...] = tuple(
    Decimal(d)
    for d in (
        "200.00", "100.00", "50.00", "20.00", "10.00",
        "5.00", "2.00", "1.00", "0.50", "0.20", "0.10", "0.05",
    )
)

_ACCEPTABLE_BAND = Decimal("1.00")
_MINOR_BAND = Decimal("10.00")
_MODERATE_BAND = Decimal("100.00")


class VarianceSeverity(str, Enum):
    """Magnitude band of a drawer variance and its follow-up."""

    BALANCED = "Balanced"
    ACCEPTABLE = "Acceptable"
    MINOR = "Minor"
    MODERATE = "Moderate"  # investigation note required
    SEVERE = "Severe"  # incident record required


class VarianceTier(str, Enum):
    """Policy outcome of a reconciliation."""

    BALANCED = "Balanced"
    ACCEPTABLE = "Acceptable"
    REQUIRES_REVIEW = "RequiresReview"
    APPROVED = "Approved"


@dataclass(frozen=True)
class ExpectedCash:
    """What the drawer should hold, and where it came from."""

    opening_float: Decimal
    cash_sales: Decimal
    cash_paid_out: Decimal
    cash_movements: Decimal = ZERO
    transaction_count: int = 0
    refund_count: int = 0

    @property
    def expected_cash(self) -> Decimal:
        return round_money(
            self.opening_float + self.cash_sales - self.cash_paid_out + self.cash_movements
        )


@dataclass(frozen=True)
class CashVarianceResult:
    """
    Evaluation of a counted drawer against its expected cash.

    requires_manager_approval is True when |variance| exceeds the
    approval threshold; tier is Approved only once a manager has signed.
    """

    expected_cash: Decimal
    actual_cash: Decimal
    variance: Decimal
    severity: VarianceSeverity
    tier: VarianceTier
    requires_manager_approval: bool

    @property
    def absolute_variance(self) -> Decimal:
        return abs(self.variance)

    @property
    def variance_percentage(self) -> Decimal:
        """Variance as a percentage of expected cash (0 when expected is 0)."""
        if self.expected_cash <= 0:
            return ZERO
        return round_money(self.variance / self.expected_cash * HUNDRED)

    @property
    def is_over(self) -> bool:
        return self.variance > 0

    @property
    def requires_investigation(self) -> bool:
        return self.severity in (VarianceSeverity.MODERATE, VarianceSeverity.SEVERE)

    @property
    def requires_incident_report(self) -> bool:
        return self.severity == VarianceSeverity.SEVERE


@dataclass(frozen=True)
class CashierVarianceSummary:
    """Reconciliation accuracy for one cashier over a window."""

    cashier_id: int
    start: datetime
    end: datetime
    total_reconciliations: int
    balanced_count: int
    within_tolerance_count: int
    requires_review_count: int
    total_variance: Decimal
    average_variance: Decimal
    largest_variance: Decimal

    @property
    def accuracy_rate(self) -> Decimal:
        """balanced / total x 100, or 0 with no reconciliations."""
        if self.total_reconciliations == 0:
            return ZERO
        return round_money(
            Decimal(self.balanced_count) / Decimal(self.total_reconciliations) * HUNDRED
        )


class CashVarianceCalculator:
    """
    Pure calculator for drawer variances.

    Contract:
        No I/O, no database access, fully deterministic.
    Guarantees:
        - classify_severity uses the fixed bands; tier_for uses the policy.
        - A variance above the approval threshold is never tiered
          Acceptable or RequiresReview; it is Approved only when
          ``manager_approved`` is True.
    """

    def __init__(self, policy: ReconciliationPolicy | None = None):
        self._policy = policy or ReconciliationPolicy()

    @property
    def policy(self) -> ReconciliationPolicy:
        return self._policy

    def expected_cash(
        self,
        opening_float: Decimal,
        cash_sales: Decimal,
        cash_paid_out: Decimal,
        cash_movements: Decimal = ZERO,
        transaction_count: int = 0,
        refund_count: int = 0,
    ) -> ExpectedCash:
        return ExpectedCash(
            opening_float=round_money(opening_float),
            cash_sales=round_money(cash_sales),
            cash_paid_out=round_money(cash_paid_out),
            cash_movements=round_money(cash_movements),
            transaction_count=transaction_count,
            refund_count=refund_count,
        )

    @staticmethod
    def classify_severity(variance: Decimal) -> VarianceSeverity:
        magnitude = abs(variance)
        if magnitude < CENT:
            return VarianceSeverity.BALANCED
        if magnitude <= _ACCEPTABLE_BAND:
            return VarianceSeverity.ACCEPTABLE
        if magnitude <= _MINOR_BAND:
            return VarianceSeverity.MINOR
        if magnitude <= _MODERATE_BAND:
            return VarianceSeverity.MODERATE
        return VarianceSeverity.SEVERE

    def requires_manager_approval(self, variance: Decimal) -> bool:
        return abs(variance) > self._policy.manager_approval_threshold

    def tier_for(self, variance: Decimal, manager_approved: bool = False) -> VarianceTier:
        magnitude = abs(variance)
        if magnitude < CENT:
            return VarianceTier.BALANCED
        if magnitude <= self._policy.acceptable_variance:
            return VarianceTier.ACCEPTABLE
        if magnitude <= self._policy.manager_approval_threshold:
            return VarianceTier.REQUIRES_REVIEW
        return VarianceTier.APPROVED if manager_approved else VarianceTier.REQUIRES_REVIEW

    def evaluate(
        self,
        expected: ExpectedCash,
        actual_cash: Decimal,
        manager_approved: bool = False,
    ) -> CashVarianceResult:
        actual = round_money(actual_cash)
        variance = actual - expected.expected_cash
        result = CashVarianceResult(
            expected_cash=expected.expected_cash,
            actual_cash=actual,
            variance=variance,
            severity=self.classify_severity(variance),
            tier=self.tier_for(variance, manager_approved),
            requires_manager_approval=self.requires_manager_approval(variance),
        )
        logger.debug(
            "cash_variance_evaluated",
            extra={
                "expected_cash": str(result.expected_cash),
                "actual_cash": str(actual),
                "variance": str(variance),
                "severity": result.severity.value,
                "tier": result.tier.value,
            },
        )
        return result

    @staticmethod
    def denomination_total(breakdown: Mapping[Decimal | str, int]) -> Decimal:
        """
        Total a denomination count.

        Raises:
            InvalidDenominationError: unknown denomination or negative count.
        """
        total = ZERO
        for raw_denomination, count in breakdown.items():
            try:
                denomination = round_money(Decimal(raw_denomination))
            except (InvalidOperation, TypeError, ValueError):
                raise InvalidDenominationError(raw_denomination, count) from None
            if denomination not in DENOMINATIONS or count < 0:
                raise InvalidDenominationError(denomination, count)
            total += denomination * count
        return round_money(total)

    def summarize(
        self,
        cashier_id: int,
        start: datetime,
        end: datetime,
        variances: Iterable[Decimal],
    ) -> CashierVarianceSummary:
        values = [abs(v) for v in variances]
        total = sum(values, ZERO)
        count = len(values)
        return CashierVarianceSummary(
            cashier_id=cashier_id,
            start=start,
            end=end,
            total_reconciliations=count,
            balanced_count=sum(1 for v in values if v < CENT),
            within_tolerance_count=sum(
                1 for v in values if v <= self._policy.acceptable_variance
            ),
            requires_review_count=sum(
                1 for v in values if v > self._policy.acceptable_variance
            ),
            total_variance=round_money(total),
            average_variance=round_money(total / count) if count else ZERO,
            largest_variance=max(values, default=ZERO),
        )
