"""
LedgerService -- sales, voids and account payments.

Responsibility:
    Records a sale as one atomic unit: a numbered header, its priced lines
    and the payment that settles it.  Voids headers through the status
    state machine, and records payments on account.

Architecture position:
    Kernel > Services -- imperative shell.  Owns the transaction boundary
    when ``auto_commit`` is True (the default): commit on success,
    rollback then re-raise on any failure.  With ``auto_commit=False`` it
    only flushes and the caller commits.

Invariants enforced:
    - A sale has at least one line and a payment, and the payment covers
      the total.  Header, lines and payment persist together or not at all.
    - Header totals are the sum of the tax engine's rounded lines, and
      subtotal + tax == total on the header and every line.
    - Status moves one way (ALLOWED_TRANSITIONS).  Cancelled and Refunded
      headers cannot be voided.
    - A void always carries a reason and an actor.

Failure modes:
    - MissingRequiredFieldError: no lines, no payment, or empty void reason.
    - InvalidAmountError / InvalidActorError: bad amounts or actor ids.
    - InsufficientPaymentError: tender below the sale total.
    - TransactionNotFoundError / InvalidStatusTransitionError on void.
    - SequenceNotConfiguredError when SALE/PAY numbering is missing.
    - sqlalchemy.exc.* propagate unchanged after rollback.

Audit relevance:
    Every header records processed_by_id and its creation time.  Voids keep
    the row and stamp voided_at, voided_by_id, void_reason and append
    "VOIDED: <reason>" to the notes.
"""

import time
from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_engines.tax import LineAmount, TaxCalculator
from retail_kernel.domain.clock import Clock
from retail_kernel.domain.dtos import PaymentInput, SaleLineInput, SaleResult
from retail_kernel.domain.policies import TaxPolicy
from retail_kernel.domain.transaction_numbers import TransactionTypeCode
from retail_kernel.domain.values import ZERO, round_money
from retail_kernel.exceptions import (
    InsufficientPaymentError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    MissingRequiredFieldError,
    TransactionNotFoundError,
)
from retail_kernel.logging_config import LogContext, get_logger
from retail_kernel.models.transaction import (
    Payment,
    PaymentMethod,
    TransactionHeader,
    TransactionLine,
    TransactionStatus,
    TransactionType,
    can_transition,
)
from retail_kernel.selectors.payment_selector import PaymentDTO, PaymentSelector
from retail_kernel.selectors.transaction_selector import TransactionDTO, TransactionSelector
from retail_kernel.services.base import BaseService, check_actor, check_choice
from retail_kernel.services.transaction_number_service import TransactionNumberService

logger = get_logger("services.ledger")

# Methods that may be over-tendered with the excess handed back.
CHANGE_GIVING_METHODS = frozenset({PaymentMethod.CASH, PaymentMethod.CARD})


def check_payment(payment: PaymentInput | None) -> PaymentMethod:
    """
    Raises:
        MissingRequiredFieldError: no payment.
        InvalidChoiceError: unknown payment method.
        InvalidAmountError: negative amount.
    """
    if payment is None:
        raise MissingRequiredFieldError("payment", "A payment is required")
    method = check_choice(PaymentMethod, "payment method", payment.payment_method)
    if payment.amount < 0:
        raise InvalidAmountError("payment amount", payment.amount, "must not be negative")
    return method


class LedgerService(BaseService):
    """
    Orchestrates writes to the transaction ledger.

    Contract:
        Each public write method is one atomic unit.  With auto_commit the
        method commits before returning or rolls back before raising.

    Non-goals:
        - Refunds (see RefundService).
        - Concurrent edits of the same header are serialized by the row
          lock taken in void_transaction only.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        tax_calculator: TaxCalculator | None = None,
        number_service: TransactionNumberService | None = None,
        tax_policy: TaxPolicy | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock)
        self._tax = tax_calculator or TaxCalculator(tax_policy)
        self._numbers = number_service or TransactionNumberService(session, self.clock)
        self._transactions = TransactionSelector(session)
        self._payments = PaymentSelector(session)
        self._auto_commit = auto_commit

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def create_sale(
        self,
        lines: Sequence[SaleLineInput],
        payment: PaymentInput | None,
        processed_by: int,
        customer_id: int | None = None,
        customer_name: str | None = None,
        notes: str | None = None,
    ) -> SaleResult:
        """
        Price, number and persist a completed sale.

        Preconditions:
            - At least one line with quantity >= 1; a payment covering the total.
        Postconditions:
            - One Completed Sale header, its lines and one payment exist,
              or (on any failure) none of them do.

        Raises:
            MissingRequiredFieldError: no lines, blank product code or no payment.
            InsufficientPaymentError: payment below total.
        """
        if not lines:
            raise MissingRequiredFieldError("lines", "A sale requires at least one line")
        method = check_payment(payment)
        check_actor("cashier", processed_by)
        for line in lines:
            if not (line.product_code or "").strip():
                raise MissingRequiredFieldError("product_code")
            if line.quantity < 1:
                raise InvalidAmountError("quantity", line.quantity, "must be at least 1")

        correlation_id = str(uuid4())
        with LogContext.bind(correlation_id=correlation_id, actor_id=str(processed_by)):
            logger.info(
                "sale_started",
                extra={"line_count": len(lines), "payment_method": method.value},
            )
            t0 = time.monotonic()
            try:
                result = self._do_create_sale(
                    lines, payment, method, processed_by, customer_id, customer_name, notes
                )
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "sale_completed",
                    extra={
                        "transaction_number": result.transaction_number,
                        "total_amount": str(result.total_amount),
                        "change_given": str(result.change_given),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    "sale_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

    def _do_create_sale(
        self,
        lines: Sequence[SaleLineInput],
        payment: PaymentInput,
        method: PaymentMethod,
        processed_by: int,
        customer_id: int | None,
        customer_name: str | None,
        notes: str | None,
    ) -> SaleResult:
        priced = self._tax.calculate_transaction(
            lines=[
                LineAmount(
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    discount_amount=line.discount_amount,
                )
                for line in lines
            ]
        )
        header_breakdown = priced.header
        tendered = round_money(payment.amount)
        if tendered < header_breakdown.total:
            raise InsufficientPaymentError(header_breakdown.total, tendered)
        change = tendered - header_breakdown.total
        if change > 0 and method not in CHANGE_GIVING_METHODS:
            raise InvalidAmountError(
                "payment amount",
                tendered,
                f"exceeds total {header_breakdown.total}; "
                f"change is not given on {method.value}",
            )

        now = self.clock.now()
        number = self._numbers.generate(TransactionTypeCode.SALE, requestor=str(processed_by))

        header = TransactionHeader(
            transaction_number=number,
            transaction_type=TransactionType.SALE.value,
            status=TransactionStatus.COMPLETED.value,
            transaction_date=now,
            customer_id=customer_id,
            customer_name=customer_name,
            subtotal=header_breakdown.subtotal,
            tax_amount=header_breakdown.tax,
            discount_amount=round_money(priced.discount_total),
            total_amount=header_breakdown.total,
            rounding_adjustment=header_breakdown.rounding_adjustment,
            processed_by_id=processed_by,
            notes=notes,
            created_at=now,
            updated_at=now,
            created_by_id=processed_by,
        )
        self.session.add(header)
        self.session.flush()

        for line_number, (line, breakdown) in enumerate(zip(lines, priced.lines), start=1):
            self.session.add(
                TransactionLine(
                    transaction_id=header.id,
                    line_number=line_number,
                    product_code=line.product_code.strip(),
                    description=line.description,
                    unit_price=round_money(line.unit_price),
                    quantity=line.quantity,
                    discount_amount=round_money(line.discount_amount),
                    subtotal=breakdown.subtotal,
                    tax_amount=breakdown.tax,
                    line_total=breakdown.total,
                    rounding_adjustment=breakdown.rounding_adjustment,
                    created_at=now,
                    updated_at=now,
                    created_by_id=processed_by,
                )
            )

        self.session.add(
            Payment(
                transaction_id=header.id,
                payment_method=method.value,
                amount=header_breakdown.total,
                amount_tendered=tendered,
                change_given=change,
                payment_date=now,
                payment_reference=payment.reference,
                customer_id=customer_id,
                processed_by_id=processed_by,
                is_refund=False,
                created_at=now,
                updated_at=now,
                created_by_id=processed_by,
            )
        )
        self.session.flush()

        return SaleResult(
            transaction_id=header.id,
            transaction_number=number,
            transaction_date=now,
            subtotal=header.subtotal,
            tax_amount=header.tax_amount,
            discount_amount=header.discount_amount,
            total_amount=header.total_amount,
            rounding_adjustment=header.rounding_adjustment,
            amount_tendered=tendered,
            change_given=change,
            line_count=len(lines),
        )

    # ------------------------------------------------------------------
    # Voids
    # ------------------------------------------------------------------

    def void_transaction(
        self,
        transaction_ref: UUID | str,
        reason: str,
        actor_id: int,
    ) -> TransactionDTO:
        """
        Cancel a Pending, OnHold or Completed header.

        ``transaction_ref`` is the header id or its transaction number.

        Raises:
            MissingRequiredFieldError: empty reason.
            TransactionNotFoundError: no such header.
            InvalidStatusTransitionError: header is Cancelled or Refunded.
        """
        if not (reason or "").strip():
            raise MissingRequiredFieldError("reason", "A void reason is required for audit")
        check_actor("actor", actor_id)

        with LogContext.bind(actor_id=str(actor_id)):
            t0 = time.monotonic()
            try:
                header = self._lock_header(transaction_ref)
                if not can_transition(header.status, TransactionStatus.CANCELLED):
                    raise InvalidStatusTransitionError(
                        header.transaction_number,
                        TransactionStatus(header.status).value,
                        TransactionStatus.CANCELLED.value,
                    )

                now = self.clock.now()
                previous_status = TransactionStatus(header.status)
                header.status = TransactionStatus.CANCELLED.value
                header.voided_at = now
                header.voided_by_id = actor_id
                header.void_reason = reason.strip()
                void_note = f"VOIDED: {reason.strip()}"
                header.notes = f"{header.notes}\n{void_note}" if header.notes else void_note
                header.updated_at = now
                header.updated_by_id = actor_id
                self.session.flush()

                dto = self._transactions.get_by_id(header.id)
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "transaction_voided",
                    extra={
                        "transaction_number": header.transaction_number,
                        "previous_status": previous_status.value,
                        "void_reason": reason.strip(),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return dto
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    "transaction_void_failed",
                    extra={"transaction_ref": str(transaction_ref)},
                    exc_info=True,
                )
                raise

    def _lock_header(self, transaction_ref: UUID | str) -> TransactionHeader:
        stmt = select(TransactionHeader)
        if isinstance(transaction_ref, UUID):
            stmt = stmt.where(TransactionHeader.id == transaction_ref)
        else:
            stmt = stmt.where(TransactionHeader.transaction_number == transaction_ref)
        header = self.session.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if header is None:
            raise TransactionNotFoundError(str(transaction_ref))
        return header

    # ------------------------------------------------------------------
    # Account payments
    # ------------------------------------------------------------------

    def create_account_payment(
        self,
        customer_id: int,
        payment: PaymentInput,
        processed_by: int,
    ) -> PaymentDTO:
        """
        Record money paid onto a customer account, with no header.

        The payment reference is a PAY number unless the caller supplies one.

        Raises:
            InvalidActorError: customer or cashier id not positive.
            InvalidAmountError: amount not positive.
        """
        method = check_payment(payment)
        check_actor("customer", customer_id)
        check_actor("cashier", processed_by)
        if payment.amount == ZERO:
            raise InvalidAmountError("payment amount", payment.amount, "must be positive")

        with LogContext.bind(actor_id=str(processed_by)):
            try:
                now = self.clock.now()
                reference = payment.reference or self._numbers.generate(
                    TransactionTypeCode.PAY, requestor=str(processed_by)
                )
                row = Payment(
                    transaction_id=None,
                    payment_method=method.value,
                    amount=round_money(payment.amount),
                    amount_tendered=round_money(payment.amount),
                    change_given=ZERO,
                    payment_date=now,
                    payment_reference=reference,
                    customer_id=customer_id,
                    processed_by_id=processed_by,
                    is_refund=False,
                    created_at=now,
                    updated_at=now,
                    created_by_id=processed_by,
                )
                self.session.add(row)
                self.session.flush()
                dto = self._payments.get_payment(row.id)
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "account_payment_recorded",
                    extra={
                        "customer_id": customer_id,
                        "amount": str(row.amount),
                        "payment_reference": reference,
                    },
                )
                return dto
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error("account_payment_failed", exc_info=True)
                raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_number: str) -> TransactionDTO:
        """
        Raises:
            TransactionNotFoundError: no such header.
        """
        dto = self._transactions.get_by_number(transaction_number)
        if dto is None:
            raise TransactionNotFoundError(transaction_number)
        return dto

    def get_payments(self, transaction_number: str) -> list[PaymentDTO]:
        return self._payments.get_payments_for(self.get_transaction(transaction_number).id)

