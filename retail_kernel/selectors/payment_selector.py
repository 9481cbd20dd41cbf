"""
Module: retail_kernel.selectors.payment_selector
Responsibility: Read-only payment queries.  Per-method period totals for
    reporting, and the cash figures a drawer reconciliation needs.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Payment amounts are magnitudes.  Whether a payment is money in or
      money out is decided by the type of the header it settles.
    - Cash takings count Cash payments on Sale headers that are Completed
      or Refunded.  A voided sale's cash has been handed back and is not
      counted.
    - Cash paid out counts Cash payments on Refund headers that were not
      themselves voided.

Failure modes:
    - InvalidDateRangeError when a window ends before it starts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from retail_kernel.models.transaction import (
    Payment,
    PaymentMethod,
    TransactionHeader,
    TransactionStatus,
    TransactionType,
)
from retail_kernel.selectors.base import BaseSelector

_CENT = Decimal("0.01")
_TAKINGS_STATUSES = (TransactionStatus.COMPLETED.value, TransactionStatus.REFUNDED.value)


def _money(value) -> Decimal:
    return Decimal(value or 0).quantize(_CENT)


@dataclass(frozen=True)
class PaymentDTO:
    """Data transfer object for a payment."""

    id: UUID
    transaction_id: UUID | None
    payment_method: PaymentMethod
    amount: Decimal
    amount_tendered: Decimal | None
    change_given: Decimal
    payment_date: datetime
    payment_reference: str | None
    customer_id: int | None
    processed_by_id: int
    is_refund: bool


@dataclass(frozen=True)
class PaymentMethodTotal:
    payment_method: PaymentMethod
    total: Decimal
    count: int


@dataclass(frozen=True)
class PaymentSummaryDTO:
    """Takings per payment method for a window, plus refunds paid out."""

    start: datetime
    end: datetime
    cashier_id: int | None
    by_method: tuple[PaymentMethodTotal, ...]
    grand_total: Decimal
    refund_total: Decimal
    refund_count: int

    def total_for(self, method: PaymentMethod) -> Decimal:
        for row in self.by_method:
            if row.payment_method == method:
                return row.total
        return Decimal("0.00")


@dataclass(frozen=True)
class CashFigures:
    """Cash in and out of one cashier's drawer over a shift window."""

    cash_sales: Decimal
    cash_paid_out: Decimal
    transaction_count: int
    refund_count: int


class PaymentSelector(BaseSelector[Payment]):
    """
    Selector for payment queries.

    Contract:
        Windows are inclusive at both ends and filter on payment_date.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    @staticmethod
    def _to_dto(payment: Payment) -> PaymentDTO:
        return PaymentDTO(
            id=payment.id,
            transaction_id=payment.transaction_id,
            payment_method=PaymentMethod(payment.payment_method),
            amount=payment.amount,
            amount_tendered=payment.amount_tendered,
            change_given=payment.change_given,
            payment_date=payment.payment_date,
            payment_reference=payment.payment_reference,
            customer_id=payment.customer_id,
            processed_by_id=payment.processed_by_id,
            is_refund=payment.is_refund,
        )

    def get_payment(self, payment_id: UUID) -> PaymentDTO | None:
        payment = self.session.get(Payment, payment_id)
        return self._to_dto(payment) if payment is not None else None

    def get_payments_for(self, transaction_id: UUID) -> list[PaymentDTO]:
        payments = self.session.execute(
            select(Payment)
            .where(Payment.transaction_id == transaction_id)
            .order_by(Payment.payment_date)
        ).scalars().all()
        return [self._to_dto(p) for p in payments]

    def get_account_payments(self, customer_id: int) -> list[PaymentDTO]:
        """Payments on account (no header) for a customer, most recent first."""
        payments = self.session.execute(
            select(Payment)
            .where(Payment.customer_id == customer_id, Payment.transaction_id.is_(None))
            .order_by(Payment.payment_date.desc())
        ).scalars().all()
        return [self._to_dto(p) for p in payments]

    def get_payment_summary(
        self,
        start: datetime,
        end: datetime,
        cashier_id: int | None = None,
    ) -> PaymentSummaryDTO:
        """
        Sale takings per payment method and refunds paid out in a window.

        Raises:
            InvalidDateRangeError: end before start.
        """
        self._check_range(start, end)

        takings = (
            select(Payment.payment_method, func.sum(Payment.amount), func.count(Payment.id))
            .join(TransactionHeader, TransactionHeader.id == Payment.transaction_id)
            .where(
                TransactionHeader.transaction_type == TransactionType.SALE.value,
                TransactionHeader.status.in_(_TAKINGS_STATUSES),
                Payment.payment_date >= start,
                Payment.payment_date <= end,
            )
            .group_by(Payment.payment_method)
            .order_by(Payment.payment_method)
        )
        refunds = (
            select(func.sum(Payment.amount), func.count(Payment.id))
            .join(TransactionHeader, TransactionHeader.id == Payment.transaction_id)
            .where(
                TransactionHeader.transaction_type == TransactionType.REFUND.value,
                TransactionHeader.voided_at.is_(None),
                Payment.payment_date >= start,
                Payment.payment_date <= end,
            )
        )
        if cashier_id is not None:
            takings = takings.where(Payment.processed_by_id == cashier_id)
            refunds = refunds.where(Payment.processed_by_id == cashier_id)

        by_method = tuple(
            PaymentMethodTotal(
                payment_method=PaymentMethod(method), total=_money(total), count=count
            )
            for method, total, count in self.session.execute(takings).all()
        )
        refund_total, refund_count = self.session.execute(refunds).one()

        return PaymentSummaryDTO(
            start=start,
            end=end,
            cashier_id=cashier_id,
            by_method=by_method,
            grand_total=sum((row.total for row in by_method), Decimal("0.00")),
            refund_total=_money(refund_total),
            refund_count=refund_count,
        )

    def get_cash_figures(self, cashier_id: int, start: datetime, end: datetime) -> CashFigures:
        """
        Cash taken and paid out by a cashier between ``start`` and ``end``.

        Raises:
            InvalidDateRangeError: end before start.
        """
        self._check_range(start, end)

        def _cash_query(transaction_type: TransactionType):
            return (
                select(func.sum(Payment.amount), func.count(Payment.id))
                .join(TransactionHeader, TransactionHeader.id == Payment.transaction_id)
                .where(
                    Payment.payment_method == PaymentMethod.CASH.value,
                    Payment.processed_by_id == cashier_id,
                    Payment.payment_date >= start,
                    Payment.payment_date <= end,
                    TransactionHeader.transaction_type == transaction_type.value,
                )
            )

        sales_total, sales_count = self.session.execute(
            _cash_query(TransactionType.SALE).where(
                TransactionHeader.status.in_(_TAKINGS_STATUSES)
            )
        ).one()
        refund_total, refund_count = self.session.execute(
            _cash_query(TransactionType.REFUND).where(TransactionHeader.voided_at.is_(None))
        ).one()

        return CashFigures(
            cash_sales=_money(sales_total),
            cash_paid_out=_money(refund_total),
            transaction_count=sales_count,
            refund_count=refund_count,
        )
