"""
Module: retail_kernel.models.sequence
Responsibility: ORM persistence for the counter store -- one row per
    transaction type holding its prefix, padding, format and current value.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value modules only.

Invariants enforced:
    - type_code is unique: exactly one counter per transaction type.
    - current_value only ever increases.  It is advanced by the atomic
      UPDATE in SequenceService.next_value and never by read-modify-write.

Failure modes:
    - IntegrityError on a second counter for the same type_code.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import TrackedBase, UTCDateTime
from retail_kernel.domain.transaction_numbers import SequenceFormat, TransactionTypeCode


class SequenceCounter(TrackedBase):
    """
    Counter row for one transaction type.

    Contract:
        Only SequenceService writes to this table.  The row is the sole
        source of truth for the next number; MAX(number)+1 is never used.

    Guarantees:
        - current_value >= starting_value - 1.
        - padding_length is 3-10.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("type_code", name="uq_sequence_type_code"),
        CheckConstraint("starting_value >= 1", name="chk_sequence_starting_value"),
        CheckConstraint(
            "padding_length BETWEEN 3 AND 10", name="chk_sequence_padding_length"
        ),
    )

    type_code: Mapped[TransactionTypeCode] = mapped_column(String(10), nullable=False)

    prefix: Mapped[str] = mapped_column(String(10), nullable=False)

    padding_length: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    starting_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    # Last value handed out (starting_value - 1 before first use)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    format_variant: Mapped[SequenceFormat] = mapped_column(
        String(30),
        nullable=False,
        default=SequenceFormat.STANDARD,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    last_generated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Requestor of the last increment (till id, service name, user)
    last_updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.type_code}: {self.prefix} @ {self.current_value}>"
