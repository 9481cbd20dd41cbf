"""
RetailConfiguration schema.

The human-authored configuration for one store deployment: the tax rate,
refund rules, drawer reconciliation thresholds and the counters that back
transaction numbering.  YAML sets are parsed into these types by the
loader; the policies are the kernel's own frozen dataclasses so the
kernel never needs to know where its thresholds came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from retail_kernel.domain.policies import (
    ReconciliationPolicy,
    RefundPolicy,
    SequencePolicy,
    TaxPolicy,
)
from retail_kernel.domain.transaction_numbers import SequenceFormat, TransactionTypeCode


@dataclass(frozen=True)
class SequenceSeedDef:
    """A counter that must exist before the tills can number documents."""

    type_code: TransactionTypeCode
    prefix: str | None = None
    padding_length: int = 5
    starting_value: int = 1
    format_variant: SequenceFormat = SequenceFormat.STANDARD
    description: str | None = None


@dataclass(frozen=True)
class RetailConfiguration:
    """
    One complete, versioned configuration set.

    checksum is the SHA-256 of the canonical source document and is the
    identity auditors compare against version control.
    """

    config_id: str
    version: int
    currency: str
    tax: TaxPolicy
    refunds: RefundPolicy
    reconciliation: ReconciliationPolicy
    sequences: SequencePolicy
    sequence_seeds: tuple[SequenceSeedDef, ...] = ()
    description: str | None = None
    checksum: str = field(default="", compare=False)

    def seed_for(self, type_code: TransactionTypeCode | str) -> SequenceSeedDef | None:
        code = TransactionTypeCode(type_code)
        for seed in self.sequence_seeds:
            if seed.type_code == code:
                return seed
        return None
