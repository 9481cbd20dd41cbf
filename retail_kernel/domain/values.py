"""
Module: retail_kernel.domain.values
Responsibility: Fixed-point money helpers shared by the engines, services and
    selectors.
Architecture position: Kernel > Domain.  Pure, zero I/O.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for monetary
      values.  Halves round away from zero (ROUND_HALF_UP on Decimal), never
      to even.  Audit totals depend on this direction.
    - No floats.  to_money() refuses float input because binary floats
      cannot represent most cent values exactly.
"""

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value, halves away from zero.

    round_money(Decimal("2.345")) == Decimal("2.35")
    round_money(Decimal("-2.345")) == Decimal("-2.35")
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Convert an input amount to a cent-rounded Decimal.

    Raises:
        TypeError: if ``value`` is a float.
    """
    if isinstance(value, float):
        raise TypeError(f"Monetary amounts must not be float: {value!r}")
    return round_money(Decimal(value))


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = CENT) -> bool:
    """True when ``a`` and ``b`` differ by at most ``tolerance``."""
    return abs(a - b) <= tolerance
