"""
Module: retail_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: the
    tax-inclusive split used by every sale and refund, and the cash
    variance tiering used at drawer close.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import retail_kernel.domain and retail_kernel.logging_config.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic: floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from retail_engines.tax import LineAmount, TaxBreakdown, TaxCalculator
from retail_engines.variance import (
    CashierVarianceSummary,
    CashVarianceCalculator,
    CashVarianceResult,
    ExpectedCash,
    VarianceSeverity,
    VarianceTier,
)

__all__ = [
    "CashierVarianceSummary",
    "CashVarianceCalculator",
    "CashVarianceResult",
    "ExpectedCash",
    "LineAmount",
    "TaxBreakdown",
    "TaxCalculator",
    "VarianceSeverity",
    "VarianceTier",
]
