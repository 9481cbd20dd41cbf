"""
Module: retail_kernel.models.transaction
Responsibility: ORM persistence for ledger headers, their lines, and the
    payments that settle them.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value modules only.

Invariants enforced:
    - transaction_number is unique across all headers.
    - Status moves one way: Pending -> Completed -> {Cancelled | Refunded}
      (ALLOWED_TRANSITIONS).  OnHold may resume to Completed or be voided.
    - Refund headers carry negative totals and reference their original
      sale through original_transaction_id.  Payments always store a
      non-negative magnitude; the sign lives on the header.
    - References are plain identifier columns.  There are no ORM
      relationships and no back-references; use cases resolve related rows
      through selectors.

Failure modes:
    - IntegrityError on duplicate transaction_number.

Audit relevance:
    Voided headers keep their row, with void_reason, voided_by_id and
    voided_at stamped and "VOIDED: <reason>" appended to notes.  Refunds
    keep the lineage back to the original sale.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class TransactionType(str, Enum):
    """Kind of ledger entry."""

    SALE = "Sale"
    REFUND = "Refund"
    ACCOUNT_PAYMENT = "AccountPayment"
    LAYBY = "Layby"
    QUOTE = "Quote"


class TransactionStatus(str, Enum):
    """Lifecycle status of a ledger entry."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ON_HOLD = "OnHold"
    REFUNDED = "Refunded"


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.ON_HOLD, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.ON_HOLD: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.COMPLETED: frozenset(
        {TransactionStatus.CANCELLED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.REFUNDED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


def can_transition(current: TransactionStatus | str, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[TransactionStatus(current)]


class PaymentMethod(str, Enum):
    """How a payment was tendered."""

    CASH = "Cash"
    CARD = "Card"
    EFT = "EFT"
    MOBILE_PAYMENT = "MobilePayment"
    ON_ACCOUNT = "OnAccount"
    VOUCHER = "Voucher"


class RefundReason(str, Enum):
    """Why goods were refunded."""

    CUSTOMER_REQUEST = "CustomerRequest"
    DEFECTIVE_PRODUCT = "DefectiveProduct"
    WRONG_PRODUCT = "WrongProduct"
    PRICE_ERROR = "PriceError"
    MANAGER_OVERRIDE = "ManagerOverride"
    COMPLIANCE_ISSUE = "ComplianceIssue"
    DUPLICATE_TRANSACTION = "DuplicateTransaction"
    EXPIRED_PRODUCT = "ExpiredProduct"
    OTHER = "Other"

    @property
    def requires_notes(self) -> bool:
        return self in (
            RefundReason.OTHER,
            RefundReason.MANAGER_OVERRIDE,
            RefundReason.COMPLIANCE_ISSUE,
        )


class TransactionHeader(TrackedBase):
    """
    One ledger entry: a sale, a refund, an account payment, a layby or a quote.

    Contract:
        Headers are created by LedgerService / RefundService inside a
        single atomic unit together with their lines and payment.

    Guarantees:
        - transaction_number is unique (uq_transaction_number).
        - For refunds, total_amount <= 0 and original_transaction_id is set.

    Non-goals:
        - Does not enforce the remaining refundable balance; RefundService
          does, from the refund history.
    """

    __tablename__ = "transaction_headers"

    __table_args__ = (
        UniqueConstraint("transaction_number", name="uq_transaction_number"),
        Index("idx_txn_date", "transaction_date"),
        Index("idx_txn_original", "original_transaction_id"),
        Index("idx_txn_customer", "customer_id"),
        Index("idx_txn_processed_by", "processed_by_id", "transaction_date"),
    )

    transaction_number: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        default=TransactionStatus.PENDING,
        nullable=False,
    )

    transaction_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    customer_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    rounding_adjustment: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0.00")
    )

    # Refund lineage
    original_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transaction_headers.id"),
        nullable=True,
    )
    refund_reason: Mapped[RefundReason | None] = mapped_column(String(30), nullable=True)
    approved_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    processed_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    voided_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TransactionHeader {self.transaction_number}: "
            f"{self.transaction_type} {self.status} {self.total_amount}>"
        )

    @property
    def is_refund(self) -> bool:
        return self.transaction_type == TransactionType.REFUND

    @property
    def is_cancelled(self) -> bool:
        return self.status == TransactionStatus.CANCELLED


class TransactionLine(TrackedBase):
    """
    One product line of a header.

    Refund lines store negative quantity and negative amounts; unit_price
    stays positive so it can be compared with the original sale line.
    """

    __tablename__ = "transaction_lines"

    __table_args__ = (
        UniqueConstraint("transaction_id", "line_number", name="uq_txn_line_number"),
        Index("idx_line_product", "product_code"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transaction_headers.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    rounding_adjustment: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0.00")
    )

    def __repr__(self) -> str:
        return f"<TransactionLine {self.line_number}: {self.product_code} x {self.quantity}>"


class Payment(TrackedBase):
    """
    Money tendered against a header, or on account with no header.

    amount is always a non-negative magnitude.  For refunds it is the
    cash or card amount paid back to the customer.
    """

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_payment_amount_non_negative"),
        Index("idx_payment_txn", "transaction_id"),
        Index("idx_payment_processed", "processed_by_id", "payment_date"),
        Index("idx_payment_method_date", "payment_method", "payment_date"),
    )

    transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transaction_headers.id"),
        nullable=True,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_tendered: Mapped[Decimal | None] = mapped_column(nullable=True)
    change_given: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    payment_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Customer paying off an account (no header)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    processed_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_method} {self.amount}>"
