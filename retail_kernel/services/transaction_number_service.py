"""
TransactionNumberService -- mints transaction, batch and unit serial numbers.

Responsibility:
    Combines a value from the counter store with the number formats in
    ``retail_kernel.domain.transaction_numbers``.  Holds no mutable state
    of its own; uniqueness comes entirely from SequenceService.next_value.

Architecture position:
    Kernel > Services.  Called by LedgerService and RefundService to
    number headers, and by production tooling for batch/serial labels.

Invariants enforced:
    - Every minted number comes from exactly one atomic counter increment.
    - Batch numbers are 13 digits, serials 19 digits, numeric only.
    - A counter is only used for the format it is configured for.

Failure modes:
    - SequenceNotConfiguredError / SequenceInactiveError from the store.
    - InvalidSequenceConfigError when a counter's format does not match.
    - InvalidSerialComponentError on bad batch type, batch number, strain
      code or batch sequence.
    - InvalidTransactionNumberError from parse().
"""

from dataclasses import replace
from datetime import date

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from retail_kernel.domain.clock import Clock
from retail_kernel.domain.policies import SequencePolicy
from retail_kernel.domain.transaction_numbers import (
    BatchNumber,
    ParsedTransactionNumber,
    SequenceFormat,
    TransactionTypeCode,
    format_batch_number,
    format_legacy_number,
    format_serial_number,
    format_standard_number,
    parse_batch_number,
    parse_transaction_number,
    validate_batch_sequence,
    validate_batch_type,
    validate_strain_code,
)
from retail_kernel.exceptions import InvalidSequenceConfigError
from retail_kernel.logging_config import get_logger
from retail_kernel.models.sequence import SequenceCounter
from retail_kernel.models.transaction import TransactionHeader
from retail_kernel.services.base import BaseService
from retail_kernel.services.sequence_service import (
    SYSTEM_REQUESTOR,
    SequenceConfig,
    SequenceService,
)

logger = get_logger("services.transaction_number")


class TransactionNumberService(BaseService):
    """
    Allocator for printed identifiers.

    Contract:
        Each ``generate*`` call consumes one counter value inside the
        caller's transaction and returns the formatted identifier.

    Guarantees:
        - Two calls never return the same number for the same type.
        - ``preview_next_number`` and ``parse`` consume nothing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        policy: SequencePolicy | None = None,
    ):
        super().__init__(session, clock)
        self._sequences = sequence_service or SequenceService(session, self.clock)
        self._policy = policy or SequencePolicy()

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def generate(
        self,
        type_code: TransactionTypeCode | str,
        requestor: str = SYSTEM_REQUESTOR,
        include_date: bool = False,
    ) -> str:
        """
        Mint ``{PREFIX}-{padded}`` (or the legacy dated form).

        Raises:
            SequenceNotConfiguredError: no counter for the type.
            InvalidSequenceConfigError: counter is not a standard counter.
        """
        config = self._config_for(type_code, SequenceFormat.STANDARD)
        value = self._sequences.next_value(config.type_code, requestor)
        if include_date:
            number = format_legacy_number(
                config.prefix, self.clock.now().date(), value, config.padding_length
            )
        else:
            number = format_standard_number(config.prefix, value, config.padding_length)
        logger.info(
            "transaction_number_generated",
            extra={
                "type_code": config.type_code.value,
                "transaction_number": number,
                "requestor": requestor,
            },
        )
        return number

    def generate_batch_number(
        self,
        batch_type: str,
        requestor: str = SYSTEM_REQUESTOR,
        batch_date: date | None = None,
    ) -> BatchNumber:
        """
        Mint a 13-digit ``{YYYYMMDD}{5-digit sequence}`` batch number.

        The batch type is validated and returned alongside the number; it
        is not encoded in it.

        Raises:
            InvalidSerialComponentError: batch type is not [A-Z0-9]+.
            SequenceNotConfiguredError: batch counter missing.
        """
        normalized_type = validate_batch_type(batch_type)
        config = self._config_for(self._policy.batch_sequence_type, SequenceFormat.DATE_BATCH)
        value = self._sequences.next_value(config.type_code, requestor)
        resolved_date = batch_date or self.clock.now().date()
        number = format_batch_number(resolved_date, value)
        logger.info(
            "batch_number_generated",
            extra={
                "batch_number": number,
                "batch_type": normalized_type,
                "sequence": value,
                "requestor": requestor,
            },
        )
        return BatchNumber(
            number=number,
            batch_type=normalized_type,
            batch_date=resolved_date,
            sequence=value,
        )

    def generate_serial_number(
        self,
        batch_number: str,
        strain_code: int,
        batch_sequence: int,
        requestor: str = SYSTEM_REQUESTOR,
    ) -> str:
        """
        Mint a 19-digit unit serial for a unit of a production batch.

        The production date is taken from the batch number so that every
        unit carries its batch's date, whenever it is labelled.

        Raises:
            InvalidSerialComponentError: malformed batch number, strain
                code outside 100-999, or batch sequence outside 1-999.
            SequenceNotConfiguredError: serial counter missing.
        """
        production_date, _ = parse_batch_number(batch_number)
        validate_strain_code(strain_code)
        validate_batch_sequence(batch_sequence)
        config = self._config_for(
            self._policy.serial_sequence_type, SequenceFormat.DATE_STRAIN_SERIAL
        )
        value = self._sequences.next_value(config.type_code, requestor)
        serial = format_serial_number(production_date, strain_code, batch_sequence, value)
        logger.info(
            "serial_number_generated",
            extra={
                "serial_number": serial,
                "batch_number": batch_number,
                "strain_code": strain_code,
                "batch_sequence": batch_sequence,
                "requestor": requestor,
            },
        )
        return serial

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def parse(self, transaction_number: str) -> ParsedTransactionNumber:
        """
        Parse a standard or legacy number and resolve its type.

        A custom prefix is resolved through the configured counters.

        Raises:
            InvalidTransactionNumberError: unrecognised shape.
        """
        parsed = parse_transaction_number(transaction_number)
        if parsed.type_code is None:
            configured = self.session.execute(
                select(SequenceCounter.type_code).where(SequenceCounter.prefix == parsed.prefix)
            ).scalar_one_or_none()
            if configured is not None:
                parsed = replace(parsed, type_code=TransactionTypeCode(configured))
        return parsed

    def is_unique(self, transaction_number: str) -> bool:
        """True when no header carries ``transaction_number``."""
        taken = self.session.execute(
            select(
                exists().where(TransactionHeader.transaction_number == transaction_number)
            )
        ).scalar()
        return not taken

    def preview_next_number(self, type_code: TransactionTypeCode | str) -> str:
        """The number the next ``generate`` would return, without consuming it."""
        config = self._sequences.get_sequence_config(type_code)
        if config.format_variant == SequenceFormat.DATE_BATCH:
            return format_batch_number(self.clock.now().date(), config.next_value)
        return format_standard_number(config.prefix, config.next_value, config.padding_length)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _config_for(
        self, type_code: TransactionTypeCode | str, expected: SequenceFormat
    ) -> SequenceConfig:
        config = self._sequences.get_sequence_config(type_code)
        if config.format_variant != expected:
            raise InvalidSequenceConfigError(
                config.type_code.value,
                f"configured as {config.format_variant.value}, not {expected.value}",
            )
        return config
