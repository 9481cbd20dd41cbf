"""
Tests for the Tax Engine.

Covers:
- Reverse split of tax-inclusive line amounts
- Header aggregation from rounded lines
- Rounding leftovers folded into tax
- Percentage and fixed discounts
- Input validation
"""

from decimal import Decimal

import pytest

from retail_engines.tax import LineAmount, TaxBreakdown, TaxCalculator
from retail_kernel.domain.policies import TaxPolicy
from retail_kernel.exceptions import InvalidAmountError, InvalidPercentageError


class TestLineSplit:
    """Splitting one tax-inclusive line into subtotal and tax."""

    def setup_method(self):
        self.calculator = TaxCalculator()

    def test_seven_hundred_inclusive(self):
        """700.00 at 15% splits into 608.70 + 91.30."""
        line = self.calculator.calculate_line(Decimal("700.00"), 1)

        assert line.subtotal == Decimal("608.70")
        assert line.tax == Decimal("91.30")
        assert line.total == Decimal("700.00")
        assert line.rounding_adjustment == Decimal("0.00")

    def test_quantity_multiplies_before_split(self):
        line = self.calculator.calculate_line(Decimal("10.00"), 100)

        assert line.total == Decimal("1000.00")
        assert line.subtotal == Decimal("869.57")
        assert line.tax == Decimal("130.43")

    def test_zero_quantity_is_zero_breakdown(self):
        assert self.calculator.calculate_line(Decimal("10.00"), 0) == TaxBreakdown.zero()

    def test_one_cent_line(self):
        """The smallest amount keeps its cent in the subtotal."""
        line = self.calculator.calculate_line(Decimal("0.01"), 1)

        assert line.subtotal == Decimal("0.01")
        assert line.tax == Decimal("0.00")
        assert line.total == Decimal("0.01")

    def test_parts_always_sum_to_total(self):
        for cents in (1, 2, 3, 7, 99, 115, 12345, 99999):
            amount = Decimal(cents) / 100
            line = self.calculator.calculate_line(amount, 3)
            assert line.subtotal + line.tax == line.total
            assert line.is_valid

    def test_negative_price_rejected(self):
        with pytest.raises(InvalidAmountError):
            self.calculator.calculate_line(Decimal("-1.00"), 1)

    def test_negative_quantity_rejected(self):
        with pytest.raises(InvalidAmountError):
            self.calculator.calculate_line(Decimal("1.00"), -1)

    def test_zero_rate_puts_everything_in_subtotal(self):
        calculator = TaxCalculator(TaxPolicy(rate=Decimal("0")))
        line = calculator.calculate_line(Decimal("100.00"), 1)

        assert line.subtotal == Decimal("100.00")
        assert line.tax == Decimal("0.00")

    def test_subtotal_and_tax_helpers(self):
        assert self.calculator.calculate_subtotal(Decimal("115.00")) == Decimal("100.00")
        assert self.calculator.calculate_tax_amount(Decimal("115.00")) == Decimal("15.00")


class TestHeaderAggregation:
    """Header totals are the sum of rounded lines."""

    def setup_method(self):
        self.calculator = TaxCalculator()

    def test_hundred_ten_rand_lines(self):
        """100 separate lines of 10.00 aggregate to 870.00 + 130.00."""
        lines = [self.calculator.calculate_line(Decimal("10.00"), 1) for _ in range(100)]
        header = self.calculator.aggregate_header(lines)

        assert header.subtotal == Decimal("870.00")
        assert header.tax == Decimal("130.00")
        assert header.total == Decimal("1000.00")

    def test_aggregation_differs_from_direct_split(self):
        """Summing lines is not the same as splitting the header total."""
        lines = [self.calculator.calculate_line(Decimal("10.00"), 1) for _ in range(100)]
        header = self.calculator.aggregate_header(lines)
        direct = self.calculator.split_inclusive_amount(Decimal("1000.00"))

        assert header.total == direct.total
        assert header.subtotal != direct.subtotal

    def test_empty_header_is_zero(self):
        assert self.calculator.aggregate_header([]) == TaxBreakdown.zero()

    def test_leftover_folded_into_tax(self):
        unbalanced = TaxBreakdown(
            subtotal=Decimal("1.00"), tax=Decimal("0.10"), total=Decimal("1.11")
        )
        header = self.calculator.aggregate_header([unbalanced])

        assert header.subtotal == Decimal("1.00")
        assert header.tax == Decimal("0.11")
        assert header.rounding_adjustment == Decimal("0.01")
        assert header.subtotal + header.tax == header.total

    def test_large_leftover_logs_warning(self, captured_logs):
        unbalanced = TaxBreakdown(
            subtotal=Decimal("1.00"), tax=Decimal("0.10"), total=Decimal("1.50")
        )
        header = self.calculator.aggregate_header([unbalanced])

        assert header.tax == Decimal("0.50")
        assert any(
            r["message"] == "tax_rounding_variance_absorbed" for r in captured_logs()
        )


class TestCalculateTransaction:
    """Whole-transaction pricing used by sales and refunds."""

    def setup_method(self):
        self.calculator = TaxCalculator()

    def test_lines_with_discount(self):
        result = self.calculator.calculate_transaction(
            lines=[
                LineAmount(Decimal("100.00"), 2, Decimal("20.00")),
                LineAmount(Decimal("10.00"), 1),
            ]
        )

        assert [l.total for l in result.lines] == [Decimal("180.00"), Decimal("10.00")]
        assert result.header.total == Decimal("190.00")
        assert result.header.subtotal == Decimal("165.22")
        assert result.header.tax == Decimal("24.78")
        assert result.discount_total == Decimal("20.00")

    def test_emits_engine_trace(self, captured_logs):
        self.calculator.calculate_transaction(lines=[LineAmount(Decimal("5.00"), 1)])

        traces = [r for r in captured_logs() if r["message"] == "RETAIL_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "tax"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_same_input_same_fingerprint(self, captured_logs):
        lines = [LineAmount(Decimal("5.00"), 2)]
        self.calculator.calculate_transaction(lines=lines)
        self.calculator.calculate_transaction(lines=lines)

        fingerprints = {
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "RETAIL_ENGINE_TRACE"
        }
        assert len(fingerprints) == 1


class TestDiscounts:
    """Percentage and fixed discounts."""

    def setup_method(self):
        self.calculator = TaxCalculator()

    def test_percentage_discount(self):
        assert self.calculator.apply_percentage_discount(
            Decimal("100.00"), Decimal("10")
        ) == Decimal("90.00")

    def test_percentage_discount_rounds_half_up(self):
        assert self.calculator.apply_percentage_discount(
            Decimal("0.05"), Decimal("50")
        ) == Decimal("0.03")

    def test_percentage_bounds(self):
        assert self.calculator.apply_percentage_discount(
            Decimal("80.00"), Decimal("100")
        ) == Decimal("0.00")
        with pytest.raises(InvalidPercentageError):
            self.calculator.apply_percentage_discount(Decimal("80.00"), Decimal("100.01"))
        with pytest.raises(InvalidPercentageError):
            self.calculator.apply_percentage_discount(Decimal("80.00"), Decimal("-1"))

    def test_fixed_discount_floors_at_zero(self):
        assert self.calculator.apply_fixed_discount(
            Decimal("100.00"), Decimal("150.00")
        ) == Decimal("0.00")

    def test_negative_fixed_discount_rejected(self):
        with pytest.raises(InvalidAmountError):
            self.calculator.apply_fixed_discount(Decimal("100.00"), Decimal("-1.00"))

    def test_line_discount_larger_than_line(self):
        line = self.calculator.calculate_line_with_discount(
            Decimal("10.00"), 1, Decimal("25.00")
        )
        assert line == TaxBreakdown.zero()


class TestRoundToCent:
    """Halves round away from zero."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2.345", "2.35"),
            ("2.344", "2.34"),
            ("-2.345", "-2.35"),
            ("0.005", "0.01"),
        ],
    )
    def test_round_half_up(self, value, expected):
        assert TaxCalculator.round_to_cent(Decimal(value)) == Decimal(expected)
