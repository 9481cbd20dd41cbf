"""
Module: retail_kernel.domain.transaction_numbers
Responsibility: Pure formatting and parsing of transaction, batch and unit
    serial numbers.  The counter store supplies the integers; this module
    decides what the printed identifier looks like.
Architecture position: Kernel > Domain.  Pure, zero I/O.  Consumed by
    TransactionNumberService.

Formats:
    Standard      ``{PREFIX}-{padded sequence}``            SALE-00123
    Legacy        ``{PREFIX}-{YYYYMMDD}-{padded sequence}``  SALE-20240105-00007
    Batch         ``{YYYYMMDD}{5-digit sequence}``           2024010500042
    Unit serial   ``{YYYYMMDD}{strain}{batch seq}{unit seq}`` 2024010510300100017

Invariants enforced:
    - Batch numbers are exactly 13 digits and unit serials exactly 19
      digits, purely numeric for barcode scanners.
    - Strain codes are 100-999; per-strain batch sequences are 1-999.
    - parse_transaction_number() tells the legacy and current formats
      apart by segment count only, and rejects every other shape.

Failure modes:
    - InvalidTransactionNumberError on malformed numbers.
    - InvalidSerialComponentError on out-of-range batch/serial parts.
    - InvalidSequenceConfigError on invalid prefixes or padding.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from retail_kernel.exceptions import (
    InvalidSequenceConfigError,
    InvalidSerialComponentError,
    InvalidTransactionNumberError,
)


class TransactionTypeCode(str, Enum):
    """Document types that own a number sequence."""

    SALE = "SALE"  # Retail sale
    GRV = "GRV"  # Goods received voucher
    RTS = "RTS"  # Return to supplier
    INV = "INV"  # Invoice
    CRN = "CRN"  # Credit note (refund)
    ADJ = "ADJ"  # Stock adjustment / production batch
    PAY = "PAY"  # Account payment
    QTE = "QTE"  # Quote
    LAY = "LAY"  # Layby
    TRF = "TRF"  # Transfer / unit serial
    ORD = "ORD"  # Online order


class SequenceFormat(str, Enum):
    """How a counter's values are rendered."""

    STANDARD = "standard"
    DATE_BATCH = "date_batch"
    DATE_STRAIN_SERIAL = "date_strain_serial"


BATCH_NUMBER_LENGTH = 13
SERIAL_NUMBER_LENGTH = 19
BATCH_SEQUENCE_DIGITS = 5
UNIT_SEQUENCE_DIGITS = 5
MIN_STRAIN_CODE, MAX_STRAIN_CODE = 100, 999
MIN_BATCH_SEQUENCE, MAX_BATCH_SEQUENCE = 1, 999
MIN_PADDING, MAX_PADDING = 3, 10
MAX_PREFIX_LENGTH = 10

_BATCH_TYPE_RE = re.compile(r"^[A-Z0-9]+$")
_LETTERS_RE = re.compile(r"^[A-Z]+$")
_DIGITS_RE = re.compile(r"^[0-9]+$")
_TYPE_CODES = {code.value: code for code in TransactionTypeCode}


@dataclass(frozen=True)
class ParsedTransactionNumber:
    """Components recovered from a standard or legacy transaction number."""

    prefix: str
    sequence: int
    number_date: date | None
    is_legacy: bool
    type_code: TransactionTypeCode | None = None


@dataclass(frozen=True)
class BatchNumber:
    """A minted batch number with the batch type stored alongside it."""

    number: str
    batch_type: str
    batch_date: date
    sequence: int

    def __str__(self) -> str:
        return self.number


@dataclass(frozen=True)
class SerialNumberParts:
    """Production lineage encoded in a 19-digit unit serial."""

    production_date: date
    strain_code: int
    batch_sequence: int
    unit_sequence: int

    @property
    def batch_prefix(self) -> str:
        return f"{self.production_date:%Y%m%d}"


def normalize_prefix(prefix: str | None, type_code: TransactionTypeCode | str) -> str:
    """
    Resolve the printed prefix for a type.

    A blank prefix falls back to the type code.  The result is upper-cased
    and must be letters only or digits only.
    """
    code = TransactionTypeCode(type_code).value
    resolved = (prefix or "").strip().upper() or code
    if len(resolved) > MAX_PREFIX_LENGTH:
        raise InvalidSequenceConfigError(
            code, f"prefix '{resolved}' longer than {MAX_PREFIX_LENGTH} characters"
        )
    if not (_LETTERS_RE.match(resolved) or _DIGITS_RE.match(resolved)):
        raise InvalidSequenceConfigError(
            code, f"prefix '{resolved}' must be letters only or digits only"
        )
    return resolved


def validate_padding(type_code: str, padding: int) -> int:
    if not MIN_PADDING <= padding <= MAX_PADDING:
        raise InvalidSequenceConfigError(
            type_code, f"padding {padding} must be between {MIN_PADDING} and {MAX_PADDING}"
        )
    return padding


def _pad(sequence: int, width: int) -> str:
    if sequence < 1:
        raise InvalidSerialComponentError("sequence", sequence, "must be >= 1")
    return str(sequence).zfill(width)


def format_standard_number(prefix: str, sequence: int, padding: int) -> str:
    """``SALE-00123``.  Sequences wider than ``padding`` are printed in full."""
    return f"{prefix}-{_pad(sequence, padding)}"


def format_legacy_number(
    prefix: str, number_date: date, sequence: int, padding: int
) -> str:
    """Date-embedded three-segment number: ``SALE-20240105-00007``."""
    return f"{prefix}-{number_date:%Y%m%d}-{_pad(sequence, padding)}"


def validate_batch_type(batch_type: str) -> str:
    normalized = (batch_type or "").strip()
    if not _BATCH_TYPE_RE.match(normalized):
        raise InvalidSerialComponentError(
            "batch type", batch_type, "must be uppercase letters and digits only"
        )
    return normalized


def format_batch_number(batch_date: date, sequence: int) -> str:
    """``{YYYYMMDD}{5-digit sequence}`` -- 13 digits."""
    if sequence >= 10**BATCH_SEQUENCE_DIGITS:
        raise InvalidSerialComponentError(
            "batch sequence", sequence, f"exceeds {BATCH_SEQUENCE_DIGITS} digits"
        )
    return f"{batch_date:%Y%m%d}{_pad(sequence, BATCH_SEQUENCE_DIGITS)}"


def format_serial_number(
    production_date: date,
    strain_code: int,
    batch_sequence: int,
    unit_sequence: int,
) -> str:
    """``{YYYYMMDD}{strain:3}{batch seq:3}{unit seq:5}`` -- 19 digits."""
    validate_strain_code(strain_code)
    validate_batch_sequence(batch_sequence)
    if unit_sequence >= 10**UNIT_SEQUENCE_DIGITS:
        raise InvalidSerialComponentError(
            "unit sequence", unit_sequence, f"exceeds {UNIT_SEQUENCE_DIGITS} digits"
        )
    return (
        f"{production_date:%Y%m%d}"
        f"{strain_code:03d}"
        f"{batch_sequence:03d}"
        f"{_pad(unit_sequence, UNIT_SEQUENCE_DIGITS)}"
    )


def validate_strain_code(strain_code: int) -> int:
    if not MIN_STRAIN_CODE <= strain_code <= MAX_STRAIN_CODE:
        raise InvalidSerialComponentError(
            "strain code",
            strain_code,
            f"must be between {MIN_STRAIN_CODE} and {MAX_STRAIN_CODE}",
        )
    return strain_code


def validate_batch_sequence(batch_sequence: int) -> int:
    if not MIN_BATCH_SEQUENCE <= batch_sequence <= MAX_BATCH_SEQUENCE:
        raise InvalidSerialComponentError(
            "batch sequence",
            batch_sequence,
            f"must be between {MIN_BATCH_SEQUENCE} and {MAX_BATCH_SEQUENCE}",
        )
    return batch_sequence


def _parse_yyyymmdd(text: str, component: str) -> date:
    try:
        return datetime.strptime(text, "%Y%m%d").date()
    except ValueError:
        raise InvalidSerialComponentError(component, text, "not a valid YYYYMMDD date") from None


def parse_batch_number(batch_number: str) -> tuple[date, int]:
    """Split a 13-digit batch number into (batch date, sequence)."""
    text = (batch_number or "").strip()
    if len(text) != BATCH_NUMBER_LENGTH or not text.isdigit():
        raise InvalidSerialComponentError(
            "batch number", batch_number, f"must be exactly {BATCH_NUMBER_LENGTH} digits"
        )
    return _parse_yyyymmdd(text[:8], "batch date"), int(text[8:])


def parse_serial_number(serial_number: str) -> SerialNumberParts:
    """Recover production lineage from a 19-digit unit serial."""
    text = (serial_number or "").strip()
    if len(text) != SERIAL_NUMBER_LENGTH or not text.isdigit():
        raise InvalidSerialComponentError(
            "serial number", serial_number, f"must be exactly {SERIAL_NUMBER_LENGTH} digits"
        )
    return SerialNumberParts(
        production_date=_parse_yyyymmdd(text[:8], "production date"),
        strain_code=validate_strain_code(int(text[8:11])),
        batch_sequence=validate_batch_sequence(int(text[11:14])),
        unit_sequence=int(text[14:]),
    )


def parse_transaction_number(transaction_number: str) -> ParsedTransactionNumber:
    """
    Parse a standard or legacy transaction number.

    Two segments are the current continuous format, three segments the
    legacy date-embedded format.  Anything else is rejected.
    """
    text = (transaction_number or "").strip()
    if not text:
        raise InvalidTransactionNumberError(transaction_number, "number is empty")

    parts = text.split("-")
    if len(parts) == 2:
        prefix, seq_text = parts
        number_date = None
    elif len(parts) == 3:
        prefix, date_text, seq_text = parts
        if len(date_text) != 8 or not date_text.isdigit():
            raise InvalidTransactionNumberError(
                transaction_number, f"date segment '{date_text}' is not YYYYMMDD"
            )
        try:
            number_date = datetime.strptime(date_text, "%Y%m%d").date()
        except ValueError:
            raise InvalidTransactionNumberError(
                transaction_number, f"date segment '{date_text}' is not a valid date"
            ) from None
    else:
        raise InvalidTransactionNumberError(
            transaction_number,
            f"expected PREFIX-SEQUENCE or PREFIX-YYYYMMDD-SEQUENCE, "
            f"found {len(parts)} segment(s)",
        )

    if not prefix or not (_LETTERS_RE.match(prefix) or _DIGITS_RE.match(prefix)):
        raise InvalidTransactionNumberError(
            transaction_number, f"prefix '{prefix}' is not a valid type prefix"
        )
    if not seq_text.isdigit() or int(seq_text) < 1:
        raise InvalidTransactionNumberError(
            transaction_number, f"sequence '{seq_text}' must be a positive integer"
        )

    return ParsedTransactionNumber(
        prefix=prefix,
        sequence=int(seq_text),
        number_date=number_date,
        is_legacy=number_date is not None,
        type_code=_TYPE_CODES.get(prefix),
    )
