"""
Module: retail_kernel.selectors.transaction_selector
Responsibility: Read-only query access to ledger headers and their lines.
    Converts ORM models to frozen DTOs for clean layer separation.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - Lines are sorted by line_number for deterministic ordering.
    - Refund lineage is resolved through original_transaction_id queries,
      never through an in-memory object graph.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
    - InvalidDateRangeError / InvalidPaginationError on bad arguments.

Audit relevance:
    Refund balance checks read previous refunds through this selector, so
    the invariant "refunds never exceed the original total" is evaluated
    against the authoritative header table.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from retail_kernel.models.transaction import (
    RefundReason,
    TransactionHeader,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)
from retail_kernel.selectors.base import BaseSelector

_REPORTABLE_STATUSES = (TransactionStatus.COMPLETED.value, TransactionStatus.REFUNDED.value)


@dataclass(frozen=True)
class TransactionLineDTO:
    """Data transfer object for a ledger line."""

    id: UUID
    line_number: int
    product_code: str
    description: str | None
    unit_price: Decimal
    quantity: int
    discount_amount: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    line_total: Decimal
    rounding_adjustment: Decimal


@dataclass(frozen=True)
class TransactionDTO:
    """Data transfer object for a ledger header and its lines."""

    id: UUID
    transaction_number: str
    transaction_type: TransactionType
    status: TransactionStatus
    transaction_date: datetime
    customer_id: int | None
    customer_name: str | None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    rounding_adjustment: Decimal
    original_transaction_id: UUID | None
    refund_reason: RefundReason | None
    approved_by_id: int | None
    processed_by_id: int
    notes: str | None
    voided_at: datetime | None
    void_reason: str | None
    lines: tuple[TransactionLineDTO, ...] = ()

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    @property
    def is_refund(self) -> bool:
        return self.transaction_type == TransactionType.REFUND


@dataclass(frozen=True)
class TransactionPage:
    """One page of a paginated lookup."""

    items: tuple[TransactionDTO, ...]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class TaxSummaryDTO:
    """Summed tax breakdown of completed and refunded sales in a window."""

    start: datetime
    end: datetime
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    transaction_count: int


class TransactionSelector(BaseSelector[TransactionHeader]):
    """
    Selector for ledger queries.

    Contract:
        Every public method returns TransactionDTOs (or aggregates of them).
        Lines within a DTO are ordered by line_number.

    Non-goals:
        - Does NOT decide refund eligibility; RefundService does.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _lines_for(self, transaction_id: UUID) -> tuple[TransactionLineDTO, ...]:
        rows = self.session.execute(
            select(TransactionLine)
            .where(TransactionLine.transaction_id == transaction_id)
            .order_by(TransactionLine.line_number)
        ).scalars().all()
        return tuple(
            TransactionLineDTO(
                id=row.id,
                line_number=row.line_number,
                product_code=row.product_code,
                description=row.description,
                unit_price=row.unit_price,
                quantity=row.quantity,
                discount_amount=row.discount_amount,
                subtotal=row.subtotal,
                tax_amount=row.tax_amount,
                line_total=row.line_total,
                rounding_adjustment=row.rounding_adjustment,
            )
            for row in rows
        )

    def _to_dto(self, header: TransactionHeader, with_lines: bool = True) -> TransactionDTO:
        return TransactionDTO(
            id=header.id,
            transaction_number=header.transaction_number,
            transaction_type=TransactionType(header.transaction_type),
            status=TransactionStatus(header.status),
            transaction_date=header.transaction_date,
            customer_id=header.customer_id,
            customer_name=header.customer_name,
            subtotal=header.subtotal,
            tax_amount=header.tax_amount,
            discount_amount=header.discount_amount,
            total_amount=header.total_amount,
            rounding_adjustment=header.rounding_adjustment,
            original_transaction_id=header.original_transaction_id,
            refund_reason=RefundReason(header.refund_reason) if header.refund_reason else None,
            approved_by_id=header.approved_by_id,
            processed_by_id=header.processed_by_id,
            notes=header.notes,
            voided_at=header.voided_at,
            void_reason=header.void_reason,
            lines=self._lines_for(header.id) if with_lines else (),
        )

    # ------------------------------------------------------------------
    # Single lookups
    # ------------------------------------------------------------------

    def get_by_id(self, transaction_id: UUID) -> TransactionDTO | None:
        header = self.session.get(TransactionHeader, transaction_id)
        return self._to_dto(header) if header is not None else None

    def get_by_number(self, transaction_number: str) -> TransactionDTO | None:
        header = self.session.execute(
            select(TransactionHeader).where(
                TransactionHeader.transaction_number == transaction_number
            )
        ).scalar_one_or_none()
        return self._to_dto(header) if header is not None else None

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def get_by_date_range(
        self,
        start: datetime,
        end: datetime,
        transaction_type: TransactionType | None = None,
    ) -> list[TransactionDTO]:
        """
        Headers with start <= transaction_date <= end, oldest first.

        Raises:
            InvalidDateRangeError: end before start.
        """
        self._check_range(start, end)
        query = (
            select(TransactionHeader)
            .where(
                TransactionHeader.transaction_date >= start,
                TransactionHeader.transaction_date <= end,
            )
            .order_by(TransactionHeader.transaction_date, TransactionHeader.transaction_number)
        )
        if transaction_type is not None:
            query = query.where(TransactionHeader.transaction_type == transaction_type.value)
        headers = self.session.execute(query).scalars().all()
        return [self._to_dto(h, with_lines=False) for h in headers]

    def get_by_customer(
        self, customer_id: int, page: int = 1, page_size: int = 20
    ) -> TransactionPage:
        """
        A customer's transactions, most recent first.

        Raises:
            InvalidPaginationError: page < 1 or page_size outside 1-100.
        """
        self._check_page(page, page_size)
        total = self.session.execute(
            select(func.count())
            .select_from(TransactionHeader)
            .where(TransactionHeader.customer_id == customer_id)
        ).scalar_one()
        headers = self.session.execute(
            select(TransactionHeader)
            .where(TransactionHeader.customer_id == customer_id)
            .order_by(
                TransactionHeader.transaction_date.desc(),
                TransactionHeader.transaction_number.desc(),
            )
            .limit(page_size)
            .offset((page - 1) * page_size)
        ).scalars().all()
        return TransactionPage(
            items=tuple(self._to_dto(h, with_lines=False) for h in headers),
            page=page,
            page_size=page_size,
            total_count=total,
        )

    def get_refunds_for(
        self, original_transaction_id: UUID, include_voided: bool = True
    ) -> list[TransactionDTO]:
        """Refund headers referencing an original, most recent first."""
        query = (
            select(TransactionHeader)
            .where(
                TransactionHeader.original_transaction_id == original_transaction_id,
                TransactionHeader.transaction_type == TransactionType.REFUND.value,
            )
            .order_by(
                TransactionHeader.transaction_date.desc(),
                TransactionHeader.transaction_number.desc(),
            )
        )
        if not include_voided:
            query = query.where(TransactionHeader.voided_at.is_(None))
        headers = self.session.execute(query).scalars().all()
        return [self._to_dto(h) for h in headers]

    # ------------------------------------------------------------------
    # Refund balance
    # ------------------------------------------------------------------

    def get_refunded_amount(self, original_transaction_id: UUID) -> Decimal:
        """Sum of |total| over refunds of an original that were not voided."""
        total = self.session.execute(
            select(func.coalesce(func.sum(TransactionHeader.total_amount), 0)).where(
                TransactionHeader.original_transaction_id == original_transaction_id,
                TransactionHeader.transaction_type == TransactionType.REFUND.value,
                TransactionHeader.voided_at.is_(None),
            )
        ).scalar_one()
        return abs(Decimal(total)).quantize(Decimal("0.01"))

    def get_refunded_quantities(self, original_transaction_id: UUID) -> dict[str, int]:
        """Units already refunded per product code, excluding voided refunds."""
        rows = self.session.execute(
            select(TransactionLine.product_code, TransactionLine.quantity)
            .join(TransactionHeader, TransactionHeader.id == TransactionLine.transaction_id)
            .where(
                TransactionHeader.original_transaction_id == original_transaction_id,
                TransactionHeader.transaction_type == TransactionType.REFUND.value,
                TransactionHeader.voided_at.is_(None),
            )
        ).all()
        refunded: dict[str, int] = defaultdict(int)
        for product_code, quantity in rows:
            refunded[product_code] += abs(quantity)
        return dict(refunded)

    def get_refunded_amounts(self, original_transaction_id: UUID) -> dict[str, Decimal]:
        """Money already refunded per product code, excluding voided refunds."""
        rows = self.session.execute(
            select(TransactionLine.product_code, TransactionLine.line_total)
            .join(TransactionHeader, TransactionHeader.id == TransactionLine.transaction_id)
            .where(
                TransactionHeader.original_transaction_id == original_transaction_id,
                TransactionHeader.transaction_type == TransactionType.REFUND.value,
                TransactionHeader.voided_at.is_(None),
            )
        ).all()
        refunded: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for product_code, line_total in rows:
            refunded[product_code] += abs(line_total)
        return dict(refunded)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_total_sales(self, start: datetime, end: datetime) -> Decimal:
        """Total of Completed and Refunded sales in the window."""
        return self.get_tax_summary(start, end).total_amount

    def get_tax_summary(self, start: datetime, end: datetime) -> TaxSummaryDTO:
        """
        Summed subtotal, tax and total of Completed and Refunded sales.

        Raises:
            InvalidDateRangeError: end before start.
        """
        self._check_range(start, end)
        subtotal, tax, total, count = self.session.execute(
            select(
                func.coalesce(func.sum(TransactionHeader.subtotal), 0),
                func.coalesce(func.sum(TransactionHeader.tax_amount), 0),
                func.coalesce(func.sum(TransactionHeader.total_amount), 0),
                func.count(TransactionHeader.id),
            ).where(
                TransactionHeader.transaction_type == TransactionType.SALE.value,
                TransactionHeader.status.in_(_REPORTABLE_STATUSES),
                TransactionHeader.transaction_date >= start,
                TransactionHeader.transaction_date <= end,
            )
        ).one()
        cent = Decimal("0.01")
        return TaxSummaryDTO(
            start=start,
            end=end,
            subtotal=Decimal(subtotal).quantize(cent),
            tax_amount=Decimal(tax).quantize(cent),
            total_amount=Decimal(total).quantize(cent),
            transaction_count=count,
        )

    def search(self, text: str, limit: int = 20) -> list[TransactionDTO]:
        """Headers whose number or customer name contains ``text``."""
        pattern = f"%{text.strip()}%"
        headers = self.session.execute(
            select(TransactionHeader)
            .where(
                or_(
                    TransactionHeader.transaction_number.ilike(pattern),
                    TransactionHeader.customer_name.ilike(pattern),
                )
            )
            .order_by(TransactionHeader.transaction_date.desc())
            .limit(limit)
        ).scalars().all()
        return [self._to_dto(h, with_lines=False) for h in headers]
