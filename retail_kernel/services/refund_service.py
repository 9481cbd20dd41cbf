"""
RefundService -- refund validation and the refund write.

Responsibility:
    Decides whether a refund against an original sale may proceed, and
    persists an accepted refund as one atomic unit: a negative CRN header,
    its negative lines, the refund payment, and the original's move to
    Refunded.

Architecture position:
    Kernel > Services -- imperative shell.  Reads the original and its
    refund lineage through TransactionSelector; prices refund lines with
    the same TaxCalculator a sale uses.  Owns the transaction boundary
    when ``auto_commit`` is True.

Invariants enforced:
    - For every original sale, the sum of |total| over its non-voided
      refunds never exceeds the original total.  Exceeding the remaining
      balance is an absolute rejection; no approval overrides it.
    - Only Sale headers that are not Cancelled may be refunded.
    - A refund past the refund window is rejected, and flagged for a
      manager, unless the policy explicitly allows a window override and
      an approving manager is named.
    - Per product, refunded units never exceed units sold minus units
      already refunded, and the refund price matches the price paid
      (net of any line discount) within the policy tolerance.
    - Refund lines are priced at their prorated share of the sold line
      total; the units that close out a product take the remainder.
    - A refund flagged for manager approval is only written when an
      approving manager is named.
    - The original row is locked while a refund is written, so two tills
      refunding the same sale are serialized.

Failure modes:
    - validate_refund() / check_refund_eligibility() never raise for a
      business rejection; they return the errors.
    - process_refund() raises RefundRejectedError carrying those errors,
      MissingRequiredFieldError for absent lines or required notes, and
      propagates store failures after rollback.

Audit relevance:
    Refund headers keep original_transaction_id, refund_reason, notes
    ("Refund Reason: <reason>" plus caller notes), processed_by_id and
    approved_by_id.  High-value refunds log refund_requires_manager_approval.
"""

import time
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_engines.tax import LineAmount, TaxBreakdown, TaxCalculator, TransactionTaxResult
from retail_kernel.domain.clock import Clock
from retail_kernel.domain.dtos import (
    RefundEligibility,
    RefundLineInput,
    RefundResult,
    RefundValidationResult,
)
from retail_kernel.domain.policies import RefundPolicy, TaxPolicy
from retail_kernel.domain.transaction_numbers import TransactionTypeCode
from retail_kernel.domain.values import ZERO, round_money, within_tolerance
from retail_kernel.exceptions import (
    MissingRequiredFieldError,
    RefundRejectedError,
    TransactionNotFoundError,
)
from retail_kernel.logging_config import LogContext, get_logger
from retail_kernel.models.transaction import (
    Payment,
    PaymentMethod,
    RefundReason,
    TransactionHeader,
    TransactionLine,
    TransactionStatus,
    TransactionType,
    can_transition,
)
from retail_kernel.selectors.transaction_selector import TransactionDTO, TransactionSelector
from retail_kernel.services.base import BaseService, check_actor, check_choice
from retail_kernel.services.transaction_number_service import TransactionNumberService

logger = get_logger("services.refund")


def _net_unit_price(line) -> Decimal:
    """What one unit of a sold line cost after its discount."""
    if line.quantity <= 0:
        return round_money(line.unit_price)
    return round_money(line.line_total / line.quantity)


@dataclass(frozen=True)
class RefundPreview:
    """What a refund would write, computed without writing it."""

    breakdown: TaxBreakdown
    validation: RefundValidationResult
    eligibility: RefundEligibility

    @property
    def refund_amount(self) -> Decimal:
        return self.breakdown.total

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid and self.eligibility.is_eligible

    @property
    def errors(self) -> tuple[str, ...]:
        return self.validation.errors + self.eligibility.errors


class RefundService(BaseService):
    """
    Orchestrates refunds against completed sales.

    Contract:
        validate/check/preview are read-only.  process_refund is one atomic
        unit: all four writes persist or none do.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: RefundPolicy | None = None,
        tax_calculator: TaxCalculator | None = None,
        number_service: TransactionNumberService | None = None,
        tax_policy: TaxPolicy | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock)
        self._policy = policy or RefundPolicy()
        self._tax = tax_calculator or TaxCalculator(tax_policy)
        self._numbers = number_service or TransactionNumberService(session, self.clock)
        self._transactions = TransactionSelector(session)
        self._auto_commit = auto_commit

    @property
    def policy(self) -> RefundPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Validation (read-only)
    # ------------------------------------------------------------------

    def validate_refund(
        self,
        original_number: str,
        requested_amount: Decimal,
        window_override_approved_by: int | None = None,
    ) -> RefundValidationResult:
        """
        Check a refund amount against the original sale's remaining balance.

        Steps: the original exists, is a Sale and is not Cancelled; the
        refund window; the remaining balance; the high-value threshold.

        Postconditions:
            - No state is changed.
            - ``is_valid`` is True only when ``errors`` is empty.
        """
        original = self._transactions.get_by_number(original_number)
        if original is None:
            return RefundValidationResult(
                is_valid=False,
                errors=(f"Original transaction {original_number} not found",),
                original_transaction_number=original_number,
            )

        errors: list[str] = []
        warnings: list[str] = []
        requires_approval = False

        if original.transaction_type != TransactionType.SALE:
            errors.append(
                f"Transaction {original_number} is a {original.transaction_type.value}, "
                f"only sales can be refunded"
            )
        if original.status == TransactionStatus.CANCELLED:
            errors.append(f"Transaction {original_number} is cancelled and cannot be refunded")

        days_since = (self.clock.now() - original.transaction_date).days
        if days_since > self._policy.window_days:
            requires_approval = True
            message = (
                f"Refund window of {self._policy.window_days} days exceeded "
                f"({days_since} days since sale)"
            )
            if self._policy.allow_window_override and window_override_approved_by:
                warnings.append(f"{message}; overridden by manager {window_override_approved_by}")
            else:
                errors.append(message)

        previous = self._transactions.get_refunded_amount(original.id)
        max_refundable = original.total_amount - previous
        requested = round_money(requested_amount)
        if requested <= ZERO:
            errors.append(f"Refund amount must be positive, got {requested}")
        elif requested > max_refundable:
            errors.append(
                f"Refund amount {requested} exceeds remaining refundable "
                f"balance {max_refundable} (original {original.total_amount}, "
                f"already refunded {previous})"
            )

        if requested > self._policy.manager_approval_threshold:
            requires_approval = True
            warnings.append(
                f"Refund of {requested} exceeds {self._policy.manager_approval_threshold}; "
                f"manager approval required"
            )

        return RefundValidationResult(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            requires_manager_approval=requires_approval,
            original_transaction_id=original.id,
            original_transaction_number=original.transaction_number,
            original_total=original.total_amount,
            previous_refund_amount=previous,
            max_refundable=max_refundable,
            days_since_original=days_since,
        )

    def check_refund_eligibility(
        self,
        original_number: str,
        lines: Sequence[RefundLineInput],
    ) -> RefundEligibility:
        """
        Line-level checks: product was sold, quantity remains, price matches.

        Postconditions:
            - No state is changed.
        """
        original = self._transactions.get_by_number(original_number)
        if original is None:
            return RefundEligibility(
                is_eligible=False,
                errors=(f"Original transaction {original_number} not found",),
            )

        sold_quantity: dict[str, int] = defaultdict(int)
        sold_prices: dict[str, list[Decimal]] = defaultdict(list)
        for line in original.lines:
            sold_quantity[line.product_code] += line.quantity
            sold_prices[line.product_code].append(_net_unit_price(line))

        refunded = self._transactions.get_refunded_quantities(original.id)
        remaining = {
            code: qty - refunded.get(code, 0) for code, qty in sold_quantity.items()
        }

        errors: list[str] = []
        requested: dict[str, int] = defaultdict(int)
        for line in lines:
            code = (line.product_code or "").strip()
            if code not in sold_quantity:
                errors.append(f"Product {code or '<blank>'} was not on transaction {original_number}")
                continue
            if line.quantity < 1:
                errors.append(f"Refund quantity for {code} must be at least 1, got {line.quantity}")
                continue
            if not any(
                within_tolerance(line.unit_price, price, self._policy.price_match_tolerance)
                for price in sold_prices[code]
            ):
                errors.append(
                    f"Refund price {line.unit_price} for {code} does not match "
                    f"price paid {sold_prices[code][0]}"
                )
            requested[code] += line.quantity

        for code, quantity in requested.items():
            if quantity > remaining[code]:
                errors.append(
                    f"Refund quantity {quantity} for {code} exceeds remaining "
                    f"refundable quantity {remaining[code]}"
                )

        return RefundEligibility(
            is_eligible=not errors,
            errors=tuple(errors),
            refundable_quantities=dict(remaining),
        )

    def preview_refund(
        self,
        original_number: str,
        lines: Sequence[RefundLineInput],
        approved_by: int | None = None,
    ) -> RefundPreview:
        """Price the refund lines and run every check, without writing."""
        priced = self._price(self._transactions.get_by_number(original_number), lines)
        return RefundPreview(
            breakdown=priced.header,
            validation=self.validate_refund(original_number, priced.header.total, approved_by),
            eligibility=self.check_refund_eligibility(original_number, lines),
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_refund(
        self,
        original_number: str,
        lines: Sequence[RefundLineInput],
        payment_method: PaymentMethod | str,
        reason: RefundReason | str,
        processed_by: int,
        notes: str | None = None,
        approved_by: int | None = None,
    ) -> RefundResult:
        """
        Validate, then atomically write the refund.

        Writes: a Completed Refund header (CRN number, negative totals,
        original reference, reason), its negative lines, one refund payment
        (positive magnitude), and the original's status set to Refunded.

        Raises:
            MissingRequiredFieldError: no lines, or notes missing for a
                reason that requires them.
            InvalidChoiceError: unknown reason or payment method.
            RefundRejectedError: any validation or eligibility error.
        """
        if not lines:
            raise MissingRequiredFieldError("lines", "A refund requires at least one line")
        refund_reason = check_choice(RefundReason, "refund reason", reason)
        method = check_choice(PaymentMethod, "payment method", payment_method)
        check_actor("cashier", processed_by)
        if approved_by is not None:
            check_actor("manager", approved_by)
        if refund_reason.requires_notes and not (notes or "").strip():
            raise MissingRequiredFieldError(
                "notes", f"Notes are required for refund reason {refund_reason.value}"
            )

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(processed_by),
            transaction_number=original_number,
        ):
            logger.info(
                "refund_started",
                extra={
                    "original_transaction_number": original_number,
                    "line_count": len(lines),
                    "refund_reason": refund_reason.value,
                },
            )
            t0 = time.monotonic()
            try:
                result = self._do_process_refund(
                    original_number, lines, method, refund_reason, processed_by, notes, approved_by
                )
                if self._auto_commit:
                    self.session.commit()
                logger.info(
                    "refund_completed",
                    extra={
                        "refund_transaction_number": result.transaction_number,
                        "refund_amount": str(result.refund_amount),
                        "remaining_refundable": str(result.remaining_refundable),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    "refund_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

    def _do_process_refund(
        self,
        original_number: str,
        lines: Sequence[RefundLineInput],
        method: PaymentMethod,
        reason: RefundReason,
        processed_by: int,
        notes: str | None,
        approved_by: int | None,
    ) -> RefundResult:
        original = self._lock_original(original_number)

        priced = self._price(self._transactions.get_by_number(original_number), lines)
        refund_amount = priced.header.total
        validation = self.validate_refund(original_number, refund_amount, approved_by)
        eligibility = self.check_refund_eligibility(original_number, lines)
        errors = validation.errors + eligibility.errors
        if errors:
            logger.warning(
                "refund_rejected",
                extra={"original_transaction_number": original_number, "errors": list(errors)},
            )
            raise RefundRejectedError(original_number, list(errors))

        if validation.requires_manager_approval:
            logger.warning(
                "refund_requires_manager_approval",
                extra={
                    "original_transaction_number": original_number,
                    "refund_amount": str(refund_amount),
                    "approved_by_id": approved_by,
                },
            )
            if approved_by is None:
                raise RefundRejectedError(
                    original_number,
                    [
                        f"Manager approval required for refund of {refund_amount}; "
                        f"no approving manager given"
                    ],
                )

        now = self.clock.now()
        number = self._numbers.generate(TransactionTypeCode.CRN, requestor=str(processed_by))
        signed = priced.header.negated()
        header_notes = f"Refund Reason: {reason.value}"
        if notes and notes.strip():
            header_notes = f"{header_notes}\n{notes.strip()}"

        header = TransactionHeader(
            transaction_number=number,
            transaction_type=TransactionType.REFUND.value,
            status=TransactionStatus.COMPLETED.value,
            transaction_date=now,
            customer_id=original.customer_id,
            customer_name=original.customer_name,
            subtotal=signed.subtotal,
            tax_amount=signed.tax,
            discount_amount=ZERO,
            total_amount=signed.total,
            rounding_adjustment=signed.rounding_adjustment,
            original_transaction_id=original.id,
            refund_reason=reason.value,
            approved_by_id=approved_by,
            processed_by_id=processed_by,
            notes=header_notes,
            created_at=now,
            updated_at=now,
            created_by_id=processed_by,
        )
        self.session.add(header)
        self.session.flush()

        for line_number, (line, breakdown) in enumerate(zip(lines, priced.lines), start=1):
            negative = breakdown.negated()
            self.session.add(
                TransactionLine(
                    transaction_id=header.id,
                    line_number=line_number,
                    product_code=line.product_code.strip(),
                    description=line.description,
                    unit_price=round_money(breakdown.total / line.quantity),
                    quantity=-line.quantity,
                    discount_amount=ZERO,
                    subtotal=negative.subtotal,
                    tax_amount=negative.tax,
                    line_total=negative.total,
                    rounding_adjustment=negative.rounding_adjustment,
                    created_at=now,
                    updated_at=now,
                    created_by_id=processed_by,
                )
            )

        self.session.add(
            Payment(
                transaction_id=header.id,
                payment_method=method.value,
                amount=refund_amount,
                amount_tendered=refund_amount,
                change_given=ZERO,
                payment_date=now,
                customer_id=original.customer_id,
                processed_by_id=processed_by,
                is_refund=True,
                created_at=now,
                updated_at=now,
                created_by_id=processed_by,
            )
        )

        if can_transition(original.status, TransactionStatus.REFUNDED):
            original.status = TransactionStatus.REFUNDED.value
        original.updated_at = now
        original.updated_by_id = processed_by
        self.session.flush()

        return RefundResult(
            transaction_id=header.id,
            transaction_number=number,
            original_transaction_number=original.transaction_number,
            transaction_date=now,
            refund_reason=reason,
            payment_method=method,
            subtotal=signed.subtotal,
            tax_amount=signed.tax,
            total_amount=signed.total,
            refund_amount=refund_amount,
            requires_manager_approval=validation.requires_manager_approval,
            approved_by_id=approved_by,
            remaining_refundable=validation.max_refundable - refund_amount,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_refund_history(self, original_number: str) -> list[TransactionDTO]:
        """
        All refunds against an original, most recent first.

        Raises:
            TransactionNotFoundError: no such original.
        """
        original = self._transactions.get_by_number(original_number)
        if original is None:
            raise TransactionNotFoundError(original_number)
        return self._transactions.get_refunds_for(original.id)

    def get_remaining_refundable(self, original_number: str) -> Decimal:
        """
        Raises:
            TransactionNotFoundError: no such original.
        """
        original = self._transactions.get_by_number(original_number)
        if original is None:
            raise TransactionNotFoundError(original_number)
        return original.total_amount - self._transactions.get_refunded_amount(original.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _price(
        self,
        original: TransactionDTO | None,
        lines: Sequence[RefundLineInput],
    ) -> TransactionTaxResult:
        """
        Price refund lines as positive magnitudes, at what the customer paid.

        Each unit is worth its share of the sold line total, so discounts
        are prorated.  The request that takes a product's last units takes
        whatever is left of that product's total, so refunding everything
        returns exactly the amount paid.  Products not on the original fall
        back to the quoted price; eligibility rejects them anyway.
        """
        sold_quantity: dict[str, int] = defaultdict(int)
        sold_total: dict[str, Decimal] = defaultdict(lambda: ZERO)
        refunded_quantity: dict[str, int] = {}
        refunded_amount: dict[str, Decimal] = {}
        if original is not None:
            for line in original.lines:
                sold_quantity[line.product_code] += line.quantity
                sold_total[line.product_code] += line.line_total
            refunded_quantity = self._transactions.get_refunded_quantities(original.id)
            refunded_amount = self._transactions.get_refunded_amounts(original.id)

        taken_quantity: dict[str, int] = defaultdict(int)
        taken_amount: dict[str, Decimal] = defaultdict(lambda: ZERO)
        amounts: list[LineAmount] = []
        for line in lines:
            code = (line.product_code or "").strip()
            quantity = max(line.quantity, 0)
            if quantity == 0 or sold_quantity.get(code, 0) <= 0:
                amounts.append(LineAmount(unit_price=line.unit_price, quantity=quantity))
                continue

            remaining = sold_quantity[code] - refunded_quantity.get(code, 0) - taken_quantity[code]
            if quantity >= remaining:
                amount = sold_total[code] - refunded_amount.get(code, ZERO) - taken_amount[code]
            else:
                amount = round_money(sold_total[code] * quantity / sold_quantity[code])
            amount = max(amount, ZERO)
            taken_quantity[code] += quantity
            taken_amount[code] += amount
            amounts.append(LineAmount(unit_price=amount, quantity=1))

        return self._tax.calculate_transaction(lines=amounts)

    def _lock_original(self, original_number: str) -> TransactionHeader:
        original = self.session.execute(
            select(TransactionHeader)
            .where(TransactionHeader.transaction_number == original_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if original is None:
            raise RefundRejectedError(
                original_number, [f"Original transaction {original_number} not found"]
            )
        return original
