"""
SequenceService -- the counter store behind every printed number.

Responsibility:
    Holds one counter row per transaction type and hands out strictly
    increasing values.  Also administers the counters: create, update,
    deactivate, reactivate, and read configuration.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by TransactionNumberService, which owns formatting.

Invariants enforced:
    - Values for a type are strictly increasing and never repeat, even
      under concurrent tills.  The increment is a single
      ``UPDATE ... SET current_value = current_value + 1 ... RETURNING``
      on the counter row.  The database serializes concurrent writers on
      that row (row lock on PostgreSQL, write lock on SQLite), so no two
      callers can read the same value.  MAX(number)+1 is FORBIDDEN.
    - The increment belongs to the caller's transaction.  A sale that
      rolls back also rolls back its number.
    - A counter never moves backwards (update_sequence refuses).
    - Missing configuration is fatal: no counter is created on demand.

Failure modes:
    - SequenceNotConfiguredError: no counter row for the type.
    - SequenceInactiveError: the counter has been deactivated.
    - SequenceAlreadyExistsError / SequenceRegressionError on admin calls.
    - InvalidSequenceConfigError on bad prefix, padding or starting value.

Audit relevance:
    Every allocation is logged (``sequence_allocated``) with the type,
    value and requestor, and the counter row keeps last_generated_at and
    last_updated_by.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from retail_kernel.domain.clock import Clock
from retail_kernel.domain.transaction_numbers import (
    SequenceFormat,
    TransactionTypeCode,
    normalize_prefix,
    validate_padding,
)
from retail_kernel.exceptions import (
    InvalidSequenceConfigError,
    SequenceAlreadyExistsError,
    SequenceInactiveError,
    SequenceNotConfiguredError,
    SequenceRegressionError,
)
from retail_kernel.logging_config import get_logger
from retail_kernel.models.sequence import SequenceCounter
from retail_kernel.services.base import BaseService

logger = get_logger("services.sequence")

SYSTEM_REQUESTOR = "SYSTEM"


@dataclass(frozen=True)
class SequenceConfig:
    """Read-only snapshot of a counter row."""

    type_code: TransactionTypeCode
    prefix: str
    padding_length: int
    current_value: int
    starting_value: int
    format_variant: SequenceFormat
    is_active: bool
    description: str | None = None
    last_generated_at: datetime | None = None
    last_updated_by: str | None = None

    @property
    def next_value(self) -> int:
        return self.current_value + 1


def _to_config(row: SequenceCounter) -> SequenceConfig:
    return SequenceConfig(
        type_code=TransactionTypeCode(row.type_code),
        prefix=row.prefix,
        padding_length=row.padding_length,
        current_value=row.current_value,
        starting_value=row.starting_value,
        format_variant=SequenceFormat(row.format_variant),
        is_active=row.is_active,
        description=row.description,
        last_generated_at=row.last_generated_at,
        last_updated_by=row.last_updated_by,
    )


class SequenceService(BaseService):
    """
    Counter store for transaction numbering.

    Contract:
        ``next_value(type)`` returns the next integer for a configured,
        active type.  The caller's transaction decides whether the value
        is kept (commit) or given back (rollback).

    Guarantees:
        - Strictly increasing values per type under concurrency.
        - The counter row stays locked until the caller's transaction
          ends; keep that transaction short.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT format numbers (see TransactionNumberService).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def next_value(
        self,
        type_code: TransactionTypeCode | str,
        requestor: str = SYSTEM_REQUESTOR,
    ) -> int:
        """
        Atomically increment and return the counter for ``type_code``.

        Preconditions:
            - A counter row exists for the type and is active.
        Postconditions:
            - Returns a value strictly greater than any value previously
              returned for this type in a committed transaction.

        Raises:
            SequenceNotConfiguredError: no counter for the type.
            SequenceInactiveError: counter deactivated.
        """
        code = TransactionTypeCode(type_code).value

        value = self.session.execute(
            update(SequenceCounter)
            .where(
                SequenceCounter.type_code == code,
                SequenceCounter.is_active.is_(True),
            )
            .values(
                current_value=SequenceCounter.current_value + 1,
                last_generated_at=self.clock.now(),
                last_updated_by=requestor,
            )
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

        if value is None:
            row = self._find(code)
            if row is None:
                logger.error("sequence_not_configured", extra={"type_code": code})
                raise SequenceNotConfiguredError(code)
            logger.error("sequence_inactive", extra={"type_code": code})
            raise SequenceInactiveError(code)

        logger.debug(
            "sequence_allocated",
            extra={"type_code": code, "value": value, "requestor": requestor},
        )
        return value

    # ------------------------------------------------------------------
    # Configuration reads
    # ------------------------------------------------------------------

    def get_sequence_config(self, type_code: TransactionTypeCode | str) -> SequenceConfig:
        """
        Raises:
            SequenceNotConfiguredError: no counter for the type.
        """
        code = TransactionTypeCode(type_code).value
        row = self._find(code)
        if row is None:
            raise SequenceNotConfiguredError(code)
        return _to_config(row)

    def current_value(self, type_code: TransactionTypeCode | str) -> int | None:
        """Current value without incrementing, or None if not configured."""
        code = TransactionTypeCode(type_code).value
        return self.session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.type_code == code)
        ).scalar_one_or_none()

    def get_all_sequences(self) -> list[SequenceConfig]:
        rows = self.session.execute(
            select(SequenceCounter).order_by(SequenceCounter.type_code)
        ).scalars().all()
        return [_to_config(row) for row in rows]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_sequence(
        self,
        type_code: TransactionTypeCode | str,
        actor_id: int,
        prefix: str | None = None,
        padding_length: int = 5,
        starting_value: int = 1,
        format_variant: SequenceFormat = SequenceFormat.STANDARD,
        description: str | None = None,
    ) -> SequenceConfig:
        """
        Configure a counter for a transaction type.

        Raises:
            SequenceAlreadyExistsError: the type already has a counter.
            InvalidSequenceConfigError: bad prefix, padding or start.
        """
        code = TransactionTypeCode(type_code).value
        resolved_prefix = normalize_prefix(prefix, code)
        validate_padding(code, padding_length)
        if starting_value < 1:
            raise InvalidSequenceConfigError(
                code, f"starting value {starting_value} must be >= 1"
            )
        if self._find(code) is not None:
            raise SequenceAlreadyExistsError(code)

        now = self.clock.now()
        row = SequenceCounter(
            type_code=code,
            prefix=resolved_prefix,
            padding_length=padding_length,
            starting_value=starting_value,
            current_value=starting_value - 1,
            format_variant=SequenceFormat(format_variant).value,
            is_active=True,
            description=description,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "sequence_created",
            extra={
                "type_code": code,
                "prefix": resolved_prefix,
                "padding_length": padding_length,
                "starting_value": starting_value,
                "format_variant": SequenceFormat(format_variant).value,
            },
        )
        return _to_config(row)

    def update_sequence(
        self,
        type_code: TransactionTypeCode | str,
        actor_id: int,
        prefix: str | None = None,
        padding_length: int | None = None,
        current_value: int | None = None,
        description: str | None = None,
    ) -> SequenceConfig:
        """
        Change a counter's presentation or move it forward.

        Raises:
            SequenceNotConfiguredError: no counter for the type.
            SequenceRegressionError: ``current_value`` below the current value.
        """
        code = TransactionTypeCode(type_code).value
        row = self._find(code, for_update=True)
        if row is None:
            raise SequenceNotConfiguredError(code)

        if prefix is not None:
            row.prefix = normalize_prefix(prefix, code)
        if padding_length is not None:
            row.padding_length = validate_padding(code, padding_length)
        if current_value is not None:
            if current_value < row.current_value:
                raise SequenceRegressionError(code, row.current_value, current_value)
            row.current_value = current_value
        if description is not None:
            row.description = description

        row.updated_at = self.clock.now()
        row.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "sequence_updated",
            extra={
                "type_code": code,
                "prefix": row.prefix,
                "padding_length": row.padding_length,
                "current_value": row.current_value,
                "actor_id": actor_id,
            },
        )
        return _to_config(row)

    def deactivate_sequence(self, type_code: TransactionTypeCode | str, actor_id: int) -> SequenceConfig:
        return self._set_active(type_code, actor_id, active=False)

    def reactivate_sequence(self, type_code: TransactionTypeCode | str, actor_id: int) -> SequenceConfig:
        return self._set_active(type_code, actor_id, active=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_active(
        self, type_code: TransactionTypeCode | str, actor_id: int, active: bool
    ) -> SequenceConfig:
        code = TransactionTypeCode(type_code).value
        row = self._find(code, for_update=True)
        if row is None:
            raise SequenceNotConfiguredError(code)
        row.is_active = active
        row.updated_at = self.clock.now()
        row.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "sequence_reactivated" if active else "sequence_deactivated",
            extra={"type_code": code, "actor_id": actor_id},
        )
        return _to_config(row)

    def _find(self, code: str, for_update: bool = False) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.type_code == code)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
