"""
Tax Engine - reverse-split tax-inclusive shelf prices.

Every price on the till already contains tax.  The engine recovers the
exclusive subtotal and the tax portion line by line, then aggregates the
lines into a header breakdown.  The policy for rounding leftovers is
fixed: any cent left over after rounding is folded into TAX, never into
the subtotal, and the unadjusted difference is kept on the breakdown as
``rounding_adjustment`` for audit.

Pure functions with no I/O - the tax rate is provided by a TaxPolicy.

Usage:
    from decimal import Decimal
    from retail_engines.tax import TaxCalculator

    calculator = TaxCalculator()          # 15% by default
    line = calculator.calculate_line(Decimal("700.00"), 1)
    print(line.subtotal, line.tax, line.total)  # 608.70 91.30 700.00

Header totals are the sum of the rounded lines.  They may differ by
fractions of a cent from splitting the header total directly; that is
accepted and expected (100 x 10.00 -> 870.00 + 130.00 = 1000.00).
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from retail_engines.tracer import traced_engine
from retail_kernel.domain.policies import TaxPolicy
from retail_kernel.domain.values import CENT, HUNDRED, ZERO, round_money
from retail_kernel.exceptions import InvalidAmountError, InvalidPercentageError
from retail_kernel.logging_config import get_logger

logger = get_logger("engines.tax")


@dataclass(frozen=True)
class LineAmount:
    """
    One priced line as entered at the till.

    unit_price is tax-inclusive.  discount_amount is a fixed amount taken
    off the whole line and is bounded at the line total.
    """

    unit_price: Decimal
    quantity: int
    discount_amount: Decimal = ZERO


@dataclass(frozen=True)
class TaxBreakdown:
    """
    Result of a tax split.

    Invariant: subtotal + tax == total.  rounding_adjustment records the
    variance that was folded into tax (zero when none was needed).
    """

    subtotal: Decimal
    tax: Decimal
    total: Decimal
    rounding_adjustment: Decimal = ZERO

    @classmethod
    def zero(cls) -> TaxBreakdown:
        return cls(subtotal=ZERO, tax=ZERO, total=ZERO, rounding_adjustment=ZERO)

    @property
    def is_valid(self) -> bool:
        """True when the parts reconcile to the total within one cent."""
        return abs(self.subtotal + self.tax - self.total) <= CENT

    def negated(self) -> TaxBreakdown:
        """Same breakdown with every sign flipped (refund headers)."""
        return TaxBreakdown(
            subtotal=-self.subtotal,
            tax=-self.tax,
            total=-self.total,
            rounding_adjustment=-self.rounding_adjustment,
        )


@dataclass(frozen=True)
class TransactionTaxResult:
    """Per-line breakdowns and the aggregated header for one transaction."""

    lines: tuple[TaxBreakdown, ...]
    header: TaxBreakdown
    discount_total: Decimal


class TaxCalculator:
    """
    Pure calculator for tax-inclusive amounts.

    Contract:
        No I/O, no database access, fully deterministic.  The rate comes
        from the injected TaxPolicy.
    Guarantees:
        - subtotal + tax == total on every breakdown returned.
        - Rounding leftovers are folded into tax only.
        - round_to_cent rounds halves away from zero.
    Non-goals:
        - Tax-exclusive pricing, compound taxes and multi-rate baskets.
    """

    def __init__(self, policy: TaxPolicy | None = None):
        self._policy = policy or TaxPolicy()

    @property
    def rate(self) -> Decimal:
        return self._policy.rate

    @staticmethod
    def round_to_cent(value: Decimal) -> Decimal:
        """Round to two places, halves away from zero."""
        return round_money(value)

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def calculate_line(self, unit_price: Decimal, quantity: int) -> TaxBreakdown:
        """
        Split one tax-inclusive line.

        Raises:
            InvalidAmountError: unit_price or quantity is negative.
        """
        self._check_line(unit_price, quantity)
        if quantity == 0:
            return TaxBreakdown.zero()
        return self.split_inclusive_amount(unit_price * quantity)

    def calculate_line_with_discount(
        self,
        unit_price: Decimal,
        quantity: int,
        discount_amount: Decimal,
    ) -> TaxBreakdown:
        """
        Split one line after a fixed discount.

        The discount comes off the tax-inclusive line total, floored at
        zero, before the split.

        Raises:
            InvalidAmountError: negative unit_price, quantity or discount.
        """
        self._check_line(unit_price, quantity)
        if discount_amount < 0:
            raise InvalidAmountError(
                "discount_amount", discount_amount, "must not be negative"
            )
        if quantity == 0:
            return TaxBreakdown.zero()
        line_total = round_money(unit_price * quantity)
        return self.split_inclusive_amount(max(ZERO, line_total - discount_amount))

    def split_inclusive_amount(self, amount: Decimal) -> TaxBreakdown:
        """
        Reverse-split a tax-inclusive amount into subtotal and tax.

        subtotal = round(total / (1 + rate)); tax = round(total - subtotal);
        any remaining variance goes to tax.
        """
        total = round_money(amount)
        subtotal = round_money(total / (1 + self.rate))
        tax = round_money(total - subtotal)
        return self._absorb_variance(subtotal, tax, total)

    def calculate_tax_amount(self, total: Decimal) -> Decimal:
        """Tax portion of a tax-inclusive amount."""
        return self.split_inclusive_amount(total).tax

    def calculate_subtotal(self, total: Decimal) -> Decimal:
        """Exclusive portion of a tax-inclusive amount."""
        return self.split_inclusive_amount(total).subtotal

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def aggregate_header(self, lines: Iterable[TaxBreakdown]) -> TaxBreakdown:
        """
        Sum line breakdowns into a header breakdown.

        Subtotal, tax and total are summed independently; if
        subtotal + tax then differs from the summed total the difference
        is folded into tax.  Empty input yields an all-zero breakdown.
        """
        subtotal = tax = total = ZERO
        for line in lines:
            subtotal += line.subtotal
            tax += line.tax
            total += line.total
        return self._absorb_variance(subtotal, tax, total)

    @traced_engine("tax", "1.0", fingerprint_fields=("lines",))
    def calculate_transaction(self, *, lines: Iterable[LineAmount]) -> TransactionTaxResult:
        """
        Split every line of a transaction and aggregate the header.

        Raises:
            InvalidAmountError: on any negative price, quantity or discount.
        """
        t0 = time.monotonic()
        line_list = list(lines)
        breakdowns = tuple(
            self.calculate_line_with_discount(
                line.unit_price, line.quantity, line.discount_amount
            )
            for line in line_list
        )
        header = self.aggregate_header(breakdowns)
        discount_total = ZERO
        for line, breakdown in zip(line_list, breakdowns):
            gross = round_money(line.unit_price * line.quantity)
            discount_total += gross - breakdown.total

        logger.info(
            "tax_transaction_calculated",
            extra={
                "line_count": len(breakdowns),
                "subtotal": str(header.subtotal),
                "tax": str(header.tax),
                "total": str(header.total),
                "discount_total": str(discount_total),
                "rounding_adjustment": str(header.rounding_adjustment),
                "tax_rate": str(self.rate),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return TransactionTaxResult(
            lines=breakdowns, header=header, discount_total=discount_total
        )

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------

    def apply_percentage_discount(self, amount: Decimal, percentage: Decimal) -> Decimal:
        """
        Apply a 0-100 percentage discount.

        Raises:
            InvalidAmountError: amount is negative.
            InvalidPercentageError: percentage outside 0-100.
        """
        if amount < 0:
            raise InvalidAmountError("amount", amount, "must not be negative")
        if percentage < 0 or percentage > HUNDRED:
            raise InvalidPercentageError(percentage)
        return round_money(amount * (1 - percentage / HUNDRED))

    def apply_fixed_discount(self, amount: Decimal, discount: Decimal) -> Decimal:
        """
        Take a fixed amount off, never going below zero.

        Raises:
            InvalidAmountError: discount is negative.
        """
        if discount < 0:
            raise InvalidAmountError("discount", discount, "must not be negative")
        return round_money(max(ZERO, amount - discount))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_line(unit_price: Decimal, quantity: int) -> None:
        if unit_price < 0:
            raise InvalidAmountError("unit_price", unit_price, "must not be negative")
        if quantity < 0:
            raise InvalidAmountError("quantity", quantity, "must not be negative")

    def _absorb_variance(
        self, subtotal: Decimal, tax: Decimal, total: Decimal
    ) -> TaxBreakdown:
        variance = total - (subtotal + tax)
        if variance == 0:
            return TaxBreakdown(subtotal=subtotal, tax=tax, total=total)

        # Leftover always lands in tax; subtotal is never adjusted.
        if abs(variance) > self._policy.max_rounding_variance:
            logger.warning(
                "tax_rounding_variance_absorbed",
                extra={
                    "variance": str(variance),
                    "subtotal": str(subtotal),
                    "tax": str(tax),
                    "total": str(total),
                },
            )
        return TaxBreakdown(
            subtotal=subtotal,
            tax=tax + variance,
            total=total,
            rounding_adjustment=variance,
        )
