"""
Configuration Loader (``retail_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the typed
``retail_config.schema`` dataclasses.  This is internal tooling; the
single public entry point for runtime config is
``retail_config.get_active_config()``.

Invariants enforced
-------------------
* Money and rates must be written as quoted strings or integers in YAML.
  A bare float such as ``0.15`` is rejected, because it has already lost
  precision by the time it reaches Python.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values  -> ``ValueError`` (including policy ``__post_init__`` checks).
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from retail_config.schema import RetailConfiguration, SequenceSeedDef
from retail_kernel.domain.policies import (
    ReconciliationPolicy,
    RefundPolicy,
    SequencePolicy,
    TaxPolicy,
)
from retail_kernel.domain.transaction_numbers import SequenceFormat, TransactionTypeCode


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    """
    Parse a monetary amount or rate.

    Raises:
        ValueError: float, bool or unparseable input.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(
            f"{name} must be a quoted decimal string or an integer, got {value!r}"
        )
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} is not a decimal: {value!r}") from None


def parse_tax_policy(data: dict[str, Any]) -> TaxPolicy:
    defaults = TaxPolicy()
    return TaxPolicy(
        rate=parse_decimal(data.get("rate", defaults.rate), "tax.rate"),
        max_rounding_variance=parse_decimal(
            data.get("max_rounding_variance", defaults.max_rounding_variance),
            "tax.max_rounding_variance",
        ),
    )


def parse_refund_policy(data: dict[str, Any]) -> RefundPolicy:
    defaults = RefundPolicy()
    return RefundPolicy(
        window_days=int(data.get("window_days", defaults.window_days)),
        manager_approval_threshold=parse_decimal(
            data.get("manager_approval_threshold", defaults.manager_approval_threshold),
            "refunds.manager_approval_threshold",
        ),
        allow_window_override=bool(
            data.get("allow_window_override", defaults.allow_window_override)
        ),
        price_match_tolerance=parse_decimal(
            data.get("price_match_tolerance", defaults.price_match_tolerance),
            "refunds.price_match_tolerance",
        ),
    )


def parse_reconciliation_policy(data: dict[str, Any]) -> ReconciliationPolicy:
    defaults = ReconciliationPolicy()
    return ReconciliationPolicy(
        acceptable_variance=parse_decimal(
            data.get("acceptable_variance", defaults.acceptable_variance),
            "reconciliation.acceptable_variance",
        ),
        manager_approval_threshold=parse_decimal(
            data.get("manager_approval_threshold", defaults.manager_approval_threshold),
            "reconciliation.manager_approval_threshold",
        ),
        large_cash_movement_threshold=parse_decimal(
            data.get("large_cash_movement_threshold", defaults.large_cash_movement_threshold),
            "reconciliation.large_cash_movement_threshold",
        ),
        max_session_hours=int(data.get("max_session_hours", defaults.max_session_hours)),
        max_session_transactions=int(
            data.get("max_session_transactions", defaults.max_session_transactions)
        ),
        large_expected_cash=parse_decimal(
            data.get("large_expected_cash", defaults.large_expected_cash),
            "reconciliation.large_expected_cash",
        ),
    )


def parse_sequence_policy(data: dict[str, Any]) -> SequencePolicy:
    defaults = SequencePolicy()
    return SequencePolicy(
        batch_sequence_type=TransactionTypeCode(
            data.get("batch_sequence_type", defaults.batch_sequence_type)
        ).value,
        serial_sequence_type=TransactionTypeCode(
            data.get("serial_sequence_type", defaults.serial_sequence_type)
        ).value,
        default_padding=int(data.get("default_padding", defaults.default_padding)),
    )


def parse_sequence_seed(data: dict[str, Any], default_padding: int = 5) -> SequenceSeedDef:
    """
    Parse one counter definition.

    Raises:
        KeyError: ``type_code`` missing.
        ValueError: unknown type code or format variant.
    """
    return SequenceSeedDef(
        type_code=TransactionTypeCode(data["type_code"]),
        prefix=data.get("prefix"),
        padding_length=int(data.get("padding_length", default_padding)),
        starting_value=int(data.get("starting_value", 1)),
        format_variant=SequenceFormat(data.get("format_variant", SequenceFormat.STANDARD.value)),
        description=data.get("description"),
    )


def parse_configuration(data: dict[str, Any]) -> RetailConfiguration:
    """
    Parse a whole configuration set.

    Raises:
        KeyError: ``config_id`` or ``version`` missing.
        ValueError: any invalid value, or a counter configured twice.
    """
    sequences = parse_sequence_policy(data.get("sequences", {}))
    seeds = tuple(
        parse_sequence_seed(seed, sequences.default_padding)
        for seed in data.get("sequence_seeds", [])
    )
    seen: set[TransactionTypeCode] = set()
    for seed in seeds:
        if seed.type_code in seen:
            raise ValueError(f"Sequence {seed.type_code.value} is configured more than once")
        seen.add(seed.type_code)

    return RetailConfiguration(
        config_id=data["config_id"],
        version=int(data["version"]),
        currency=data.get("currency", "ZAR"),
        description=data.get("description"),
        tax=parse_tax_policy(data.get("tax", {})),
        refunds=parse_refund_policy(data.get("refunds", {})),
        reconciliation=parse_reconciliation_policy(data.get("reconciliation", {})),
        sequences=sequences,
        sequence_seeds=seeds,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
