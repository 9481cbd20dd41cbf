"""
Unit tests for transaction, batch and serial number formats.

Pure functions only; no database.
"""

from datetime import date

import pytest

from retail_kernel.domain.transaction_numbers import (
    BATCH_NUMBER_LENGTH,
    SERIAL_NUMBER_LENGTH,
    TransactionTypeCode,
    format_batch_number,
    format_legacy_number,
    format_serial_number,
    format_standard_number,
    normalize_prefix,
    parse_batch_number,
    parse_serial_number,
    parse_transaction_number,
    validate_batch_type,
    validate_padding,
)
from retail_kernel.exceptions import (
    InvalidSequenceConfigError,
    InvalidSerialComponentError,
    InvalidTransactionNumberError,
)


class TestStandardFormat:

    def test_padded(self):
        assert format_standard_number("SALE", 123, 5) == "SALE-00123"

    def test_wider_than_padding_printed_in_full(self):
        assert format_standard_number("SALE", 123456, 5) == "SALE-123456"

    def test_legacy_embeds_date(self):
        assert (
            format_legacy_number("SALE", date(2024, 1, 5), 7, 5) == "SALE-20240105-00007"
        )

    def test_sequence_must_be_positive(self):
        with pytest.raises(InvalidSerialComponentError):
            format_standard_number("SALE", 0, 5)


class TestPrefixAndPadding:

    def test_blank_prefix_falls_back_to_type_code(self):
        assert normalize_prefix(None, TransactionTypeCode.CRN) == "CRN"
        assert normalize_prefix("   ", "SALE") == "SALE"

    def test_prefix_upper_cased(self):
        assert normalize_prefix(" till ", "SALE") == "TILL"

    def test_numeric_prefix_allowed(self):
        assert normalize_prefix("042", "SALE") == "042"

    @pytest.mark.parametrize("prefix", ["S1", "SA-LE", "ABCDEFGHIJK"])
    def test_invalid_prefix(self, prefix):
        with pytest.raises(InvalidSequenceConfigError):
            normalize_prefix(prefix, "SALE")

    @pytest.mark.parametrize("padding", [2, 11])
    def test_padding_bounds(self, padding):
        with pytest.raises(InvalidSequenceConfigError):
            validate_padding("SALE", padding)

    def test_padding_within_bounds(self):
        assert validate_padding("SALE", 3) == 3
        assert validate_padding("SALE", 10) == 10


class TestBatchNumbers:

    def test_thirteen_digits(self):
        number = format_batch_number(date(2024, 1, 5), 42)

        assert number == "2024010500042"
        assert len(number) == BATCH_NUMBER_LENGTH

    def test_sequence_overflow(self):
        with pytest.raises(InvalidSerialComponentError):
            format_batch_number(date(2024, 1, 5), 100000)

    def test_parse(self):
        assert parse_batch_number("2024010500042") == (date(2024, 1, 5), 42)

    @pytest.mark.parametrize("number", ["", "202401050004", "20240105000421", "2024133100001", "20240105ABCDE"])
    def test_parse_rejects_malformed(self, number):
        with pytest.raises(InvalidSerialComponentError):
            parse_batch_number(number)

    def test_batch_type(self):
        assert validate_batch_type("PRD1") == "PRD1"

    @pytest.mark.parametrize("batch_type", ["", "prd", "A-B", "A B"])
    def test_batch_type_rejected(self, batch_type):
        with pytest.raises(InvalidSerialComponentError):
            validate_batch_type(batch_type)


class TestSerialNumbers:

    def test_nineteen_digits(self):
        serial = format_serial_number(date(2024, 1, 5), 103, 1, 17)

        assert serial == "2024010510300100017"
        assert len(serial) == SERIAL_NUMBER_LENGTH
        assert serial.isdigit()

    @pytest.mark.parametrize("strain", [99, 1000])
    def test_strain_code_range(self, strain):
        with pytest.raises(InvalidSerialComponentError):
            format_serial_number(date(2024, 1, 5), strain, 1, 1)

    @pytest.mark.parametrize("batch_sequence", [0, 1000])
    def test_batch_sequence_range(self, batch_sequence):
        with pytest.raises(InvalidSerialComponentError):
            format_serial_number(date(2024, 1, 5), 103, batch_sequence, 1)

    def test_lineage_recovered(self):
        parts = parse_serial_number("2024010510300200017")

        assert parts.production_date == date(2024, 1, 5)
        assert parts.strain_code == 103
        assert parts.batch_sequence == 2
        assert parts.unit_sequence == 17
        assert parts.batch_prefix == "20240105"

    def test_parse_rejects_wrong_length(self):
        with pytest.raises(InvalidSerialComponentError):
            parse_serial_number("202401051030010001")


class TestParseTransactionNumber:

    def test_current_format(self):
        parsed = parse_transaction_number("SALE-00123")

        assert parsed.prefix == "SALE"
        assert parsed.sequence == 123
        assert parsed.number_date is None
        assert parsed.is_legacy is False
        assert parsed.type_code == TransactionTypeCode.SALE

    def test_legacy_format(self):
        parsed = parse_transaction_number("CRN-20240105-00007")

        assert parsed.is_legacy is True
        assert parsed.number_date == date(2024, 1, 5)
        assert parsed.sequence == 7
        assert parsed.type_code == TransactionTypeCode.CRN

    def test_unknown_prefix_has_no_type(self):
        parsed = parse_transaction_number("TILL-00001")
        assert parsed.type_code is None

    @pytest.mark.parametrize(
        "number",
        [
            "",
            "SALE",
            "SALE-1-2-3",
            "SALE-2024AB05-00001",
            "SALE-20241332-00001",
            "SALE-abc",
            "SALE-0",
            "SA1E-00001",
            "-00001",
        ],
    )
    def test_rejects_malformed(self, number):
        with pytest.raises(InvalidTransactionNumberError):
            parse_transaction_number(number)
