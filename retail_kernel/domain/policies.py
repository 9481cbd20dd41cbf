"""
Module: retail_kernel.domain.policies
Responsibility: Frozen policy objects holding every tunable threshold the
    kernel enforces.  Services receive them by constructor injection;
    retail_config builds them from YAML.
Architecture position: Kernel > Domain.  Pure.  The kernel never reads
    configuration files itself.

Invariants enforced:
    - The three approval thresholds are independent values:
      ReconciliationPolicy.acceptable_variance (10.00),
      ReconciliationPolicy.manager_approval_threshold (50.00), and
      RefundPolicy.manager_approval_threshold (1000.00).  None is derived
      from another.
    - The refund window is an absolute rejection unless
      RefundPolicy.allow_window_override is switched on explicitly.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TaxPolicy:
    """Single tax regime with tax-inclusive shelf prices."""

    rate: Decimal = Decimal("0.15")
    max_rounding_variance: Decimal = Decimal("0.01")

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError(f"Tax rate must not be negative: {self.rate}")
        if self.max_rounding_variance < 0:
            raise ValueError("max_rounding_variance must not be negative")


@dataclass(frozen=True)
class RefundPolicy:
    """
    Refund window and approval thresholds.

    allow_window_override is reserved: when False (the default) a refund
    past ``window_days`` is rejected whatever approval is offered.
    """

    window_days: int = 30
    manager_approval_threshold: Decimal = Decimal("1000.00")
    allow_window_override: bool = False
    price_match_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self) -> None:
        if self.window_days < 0:
            raise ValueError(f"Refund window must not be negative: {self.window_days}")
        if self.manager_approval_threshold < 0:
            raise ValueError("Refund approval threshold must not be negative")


@dataclass(frozen=True)
class ReconciliationPolicy:
    """Cash drawer variance tiers and pre-close sanity limits."""

    acceptable_variance: Decimal = Decimal("10.00")
    manager_approval_threshold: Decimal = Decimal("50.00")
    large_cash_movement_threshold: Decimal = Decimal("500.00")
    max_session_hours: int = 12
    max_session_transactions: int = 500
    large_expected_cash: Decimal = Decimal("10000.00")

    def __post_init__(self) -> None:
        if self.acceptable_variance < 0:
            raise ValueError("acceptable_variance must not be negative")
        if self.manager_approval_threshold < self.acceptable_variance:
            raise ValueError(
                "manager_approval_threshold must not be below acceptable_variance"
            )


@dataclass(frozen=True)
class SequencePolicy:
    """Which counters back batch and serial numbers."""

    batch_sequence_type: str = "ADJ"
    serial_sequence_type: str = "TRF"
    default_padding: int = 5
