"""
Tests for TransactionNumberService.

Covers:
- Standard and legacy transaction numbers
- Custom prefixes and parse-time type resolution
- 13-digit batch numbers and 19-digit unit serials
- Preview and uniqueness checks that consume nothing
"""

from datetime import date

import pytest

from retail_kernel.domain.transaction_numbers import (
    BATCH_NUMBER_LENGTH,
    SERIAL_NUMBER_LENGTH,
    TransactionTypeCode,
    parse_serial_number,
)
from retail_kernel.exceptions import (
    InvalidSequenceConfigError,
    InvalidSerialComponentError,
    SequenceNotConfiguredError,
)
from retail_kernel.services import TransactionNumberService
from tests.conftest import MANAGER_ID


class TestGenerate:
    """Standard numbers."""

    def test_first_numbers(self, number_service):
        assert number_service.generate("SALE") == "SALE-00001"
        assert number_service.generate("SALE") == "SALE-00002"
        assert number_service.generate(TransactionTypeCode.CRN) == "CRN-00001"

    def test_legacy_dated_number(self, number_service):
        assert number_service.generate("SALE", include_date=True) == "SALE-20240115-00001"

    def test_custom_prefix(self, number_service, sequence_service):
        sequence_service.update_sequence("SALE", MANAGER_ID, prefix="TILL")
        assert number_service.generate("SALE") == "TILL-00001"

    def test_batch_counter_is_not_standard(self, number_service):
        with pytest.raises(InvalidSequenceConfigError):
            number_service.generate("ADJ")

    def test_unconfigured_type(self, session, deterministic_clock):
        service = TransactionNumberService(session, deterministic_clock)
        with pytest.raises(SequenceNotConfiguredError):
            service.generate("SALE")

    def test_logged(self, number_service, captured_logs):
        number_service.generate("SALE", requestor="101")

        records = [r for r in captured_logs() if r["message"] == "transaction_number_generated"]
        assert records[0]["transaction_number"] == "SALE-00001"
        assert records[0]["requestor"] == "101"


class TestParse:
    """Parsing resolves custom prefixes through the counters."""

    def test_standard(self, number_service):
        parsed = number_service.parse("SALE-00042")

        assert parsed.type_code == TransactionTypeCode.SALE
        assert parsed.sequence == 42
        assert parsed.number_date is None

    def test_legacy(self, number_service):
        parsed = number_service.parse("SALE-20231231-00042")

        assert parsed.is_legacy
        assert parsed.number_date == date(2023, 12, 31)

    def test_custom_prefix_resolves_type(self, number_service, sequence_service):
        sequence_service.update_sequence("CRN", MANAGER_ID, prefix="RET")
        parsed = number_service.parse("RET-00003")

        assert parsed.prefix == "RET"
        assert parsed.type_code == TransactionTypeCode.CRN

    def test_unknown_prefix_stays_unresolved(self, number_service):
        assert number_service.parse("XYZ-00003").type_code is None


class TestBatchNumbers:
    """13-digit production batch numbers."""

    def test_generate(self, number_service):
        batch = number_service.generate_batch_number("PRD")

        assert batch.number == "2024011500001"
        assert len(str(batch)) == BATCH_NUMBER_LENGTH
        assert batch.batch_type == "PRD"
        assert batch.batch_date == date(2024, 1, 15)
        assert batch.sequence == 1

    def test_sequence_continues_across_types(self, number_service):
        number_service.generate_batch_number("PRD")
        second = number_service.generate_batch_number("RAW1")

        assert second.number == "2024011500002"

    def test_explicit_batch_date(self, number_service):
        batch = number_service.generate_batch_number("PRD", batch_date=date(2024, 2, 1))
        assert batch.number == "2024020100001"

    def test_lowercase_batch_type_rejected(self, number_service, sequence_service):
        with pytest.raises(InvalidSerialComponentError):
            number_service.generate_batch_number("prd")
        assert sequence_service.current_value("ADJ") == 0


class TestSerialNumbers:
    """19-digit unit serials."""

    def test_generate(self, number_service):
        serial = number_service.generate_serial_number("2024011500001", 103, 1)

        assert serial == "2024011510300100001"
        assert len(serial) == SERIAL_NUMBER_LENGTH

    def test_production_date_comes_from_batch(self, number_service, deterministic_clock):
        batch = number_service.generate_batch_number("PRD")
        deterministic_clock.advance(days=3)

        serial = number_service.generate_serial_number(batch.number, 250, 7)
        parts = parse_serial_number(serial)

        assert parts.production_date == date(2024, 1, 15)
        assert parts.strain_code == 250
        assert parts.batch_sequence == 7

    def test_units_numbered_consecutively(self, number_service):
        serials = [
            number_service.generate_serial_number("2024011500001", 103, 1) for _ in range(3)
        ]
        assert [parse_serial_number(s).unit_sequence for s in serials] == [1, 2, 3]

    @pytest.mark.parametrize(
        "batch_number, strain, batch_sequence",
        [
            ("123", 103, 1),
            ("2024011500001", 50, 1),
            ("2024011500001", 103, 1000),
        ],
    )
    def test_invalid_components_consume_nothing(
        self, number_service, sequence_service, batch_number, strain, batch_sequence
    ):
        with pytest.raises(InvalidSerialComponentError):
            number_service.generate_serial_number(batch_number, strain, batch_sequence)
        assert sequence_service.current_value("TRF") == 0


class TestReads:
    """Preview and uniqueness."""

    def test_preview_consumes_nothing(self, number_service, sequence_service):
        assert number_service.preview_next_number("SALE") == "SALE-00001"
        assert number_service.preview_next_number("SALE") == "SALE-00001"
        assert sequence_service.current_value("SALE") == 0

    def test_preview_batch(self, number_service):
        assert number_service.preview_next_number("ADJ") == "2024011500001"

    def test_is_unique(self, number_service, make_sale):
        sale = make_sale("10.00")

        assert number_service.is_unique(sale.transaction_number) is False
        assert number_service.is_unique("SALE-99999") is True

    def test_preview_matches_next_generate(self, number_service, make_sale):
        make_sale("10.00")
        preview = number_service.preview_next_number("SALE")
        sale = make_sale("20.00")

        assert sale.transaction_number == preview
