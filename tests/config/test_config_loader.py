"""
Tests for retail_config: YAML loading, policy parsing and the config trace.
"""

from decimal import Decimal

import pytest
import yaml

from retail_config import get_active_config
from retail_config.loader import (
    compute_checksum,
    parse_configuration,
    parse_decimal,
    parse_reconciliation_policy,
)
from retail_kernel.domain.transaction_numbers import SequenceFormat, TransactionTypeCode

MINIMAL = {"config_id": "TEST", "version": 3}


def _write_set(directory, name, data):
    path = directory / f"{name}.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultSet:

    def test_policies(self):
        config = get_active_config()

        assert config.config_id == "RETAIL-DEFAULT"
        assert config.version == 1
        assert config.currency == "ZAR"
        assert config.tax.rate == Decimal("0.15")
        assert config.refunds.window_days == 30
        assert config.refunds.manager_approval_threshold == Decimal("1000.00")
        assert config.refunds.allow_window_override is False
        assert config.reconciliation.acceptable_variance == Decimal("10.00")
        assert config.reconciliation.manager_approval_threshold == Decimal("50.00")

    def test_every_type_code_seeded(self):
        config = get_active_config()

        assert len(config.sequence_seeds) == 11
        assert {s.type_code for s in config.sequence_seeds} == set(TransactionTypeCode)

    def test_seed_lookup(self):
        config = get_active_config()

        assert config.seed_for("ADJ").format_variant == SequenceFormat.DATE_BATCH
        assert config.seed_for(TransactionTypeCode.SALE).padding_length == 5

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "RETAIL_CONFIG_TRACE"]
        assert traces[0]["config_id"] == "RETAIL-DEFAULT"
        assert traces[0]["checksum"] == config.checksum

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config("nope", config_dir=tmp_path)


class TestParsing:

    def test_defaults_fill_gaps(self):
        config = parse_configuration(MINIMAL)

        assert config.tax.rate == Decimal("0.15")
        assert config.sequence_seeds == ()
        assert config.seed_for("SALE") is None

    def test_custom_set_from_directory(self, tmp_path):
        _write_set(
            tmp_path,
            "store42",
            {
                **MINIMAL,
                "refunds": {"window_days": 14, "allow_window_override": True},
                "sequence_seeds": [{"type_code": "SALE", "prefix": "S42", "padding_length": 6}],
            },
        )
        config = get_active_config("store42", config_dir=tmp_path)

        assert config.refunds.window_days == 14
        assert config.refunds.allow_window_override is True
        assert config.seed_for("SALE").prefix == "S42"
        assert config.seed_for("SALE").padding_length == 6

    def test_default_padding_applies_to_seeds(self):
        config = parse_configuration(
            {**MINIMAL, "sequences": {"default_padding": 7}, "sequence_seeds": [{"type_code": "CRN"}]}
        )
        assert config.seed_for("CRN").padding_length == 7

    def test_bare_float_rejected(self, tmp_path):
        path = tmp_path / "floaty.yaml"
        path.write_text("config_id: X\nversion: 1\ntax:\n  rate: 0.15\n")

        with pytest.raises(ValueError, match="tax.rate"):
            get_active_config("floaty", config_dir=tmp_path)

    def test_duplicate_seed_rejected(self):
        with pytest.raises(ValueError, match="more than once"):
            parse_configuration(
                {**MINIMAL, "sequence_seeds": [{"type_code": "SALE"}, {"type_code": "SALE"}]}
            )

    def test_unknown_type_code_rejected(self):
        with pytest.raises(ValueError):
            parse_configuration({**MINIMAL, "sequence_seeds": [{"type_code": "XXX"}]})

    def test_inverted_reconciliation_thresholds(self):
        with pytest.raises(ValueError):
            parse_reconciliation_policy(
                {"acceptable_variance": "60.00", "manager_approval_threshold": "50.00"}
            )

    def test_missing_identity(self):
        with pytest.raises(KeyError):
            parse_configuration({"version": 1})

    @pytest.mark.parametrize("value, expected", [("12.50", Decimal("12.50")), (5, Decimal("5"))])
    def test_parse_decimal(self, value, expected):
        assert parse_decimal(value, "amount") == expected

    @pytest.mark.parametrize("value", [1.5, True, "abc"])
    def test_parse_decimal_rejects(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value, "amount")

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})
