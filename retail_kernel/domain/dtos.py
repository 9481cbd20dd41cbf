"""
DTOs -- Pure data carried into and out of the ledger use cases.

Responsibility:
    Defines the immutable inputs a till hands to LedgerService and
    RefundService (sale lines, payments, refund lines) and the results
    those services hand back (sale and refund receipts, refund
    validation outcomes).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Enum types live with the models and
    are referenced here for type checking only; services coerce raw values.

Invariants enforced:
    - All money is Decimal.  Quantities are int.
    - Results are frozen; callers cannot alter what was persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from retail_kernel.domain.values import ZERO

if TYPE_CHECKING:
    from retail_kernel.models.transaction import PaymentMethod, RefundReason


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class SaleLineInput:
    """One product line as rung up.  unit_price is tax-inclusive."""

    product_code: str
    unit_price: Decimal
    quantity: int
    discount_amount: Decimal = ZERO
    description: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    """
    Tender offered for a sale or an account payment.

    amount is what the customer hands over.  For cash, anything above the
    total is returned as change.
    """

    payment_method: PaymentMethod | str
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class RefundLineInput:
    """
    One product being returned.

    quantity is a positive count of units coming back; the ledger stores
    it negated on the refund line.
    """

    product_code: str
    quantity: int
    unit_price: Decimal
    description: str | None = None


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SaleResult:
    transaction_id: UUID
    transaction_number: str
    transaction_date: datetime
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    rounding_adjustment: Decimal
    amount_tendered: Decimal
    change_given: Decimal
    line_count: int


@dataclass(frozen=True)
class RefundValidationResult:
    """
    Outcome of checking a refund request against its original sale.

    ``errors`` are hard failures; the refund may not proceed while any are
    present.  ``requires_manager_approval`` is a soft flag raised by a
    high-value request or by an expired refund window.
    """

    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    requires_manager_approval: bool = False
    original_transaction_id: UUID | None = None
    original_transaction_number: str | None = None
    original_total: Decimal = ZERO
    previous_refund_amount: Decimal = ZERO
    max_refundable: Decimal = ZERO
    days_since_original: int | None = None


@dataclass(frozen=True)
class RefundEligibility:
    """Line-level refund check: one message per product that cannot be refunded."""

    is_eligible: bool
    errors: tuple[str, ...] = ()
    refundable_quantities: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    """
    A processed refund.

    Header amounts are negative; ``refund_amount`` is the positive amount
    paid back to the customer.
    """

    transaction_id: UUID
    transaction_number: str
    original_transaction_number: str
    transaction_date: datetime
    refund_reason: RefundReason
    payment_method: PaymentMethod
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    refund_amount: Decimal
    requires_manager_approval: bool
    approved_by_id: int | None
    remaining_refundable: Decimal
