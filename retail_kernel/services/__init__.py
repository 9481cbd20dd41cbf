"""Services for the retail kernel (write side)."""

from retail_kernel.services.cash_drawer_service import (
    CashDrawerService,
    PreReconciliationCheck,
    ReconciliationResult,
)
from retail_kernel.services.ledger_service import LedgerService
from retail_kernel.services.refund_service import RefundPreview, RefundService
from retail_kernel.services.sequence_service import SequenceConfig, SequenceService
from retail_kernel.services.transaction_number_service import TransactionNumberService

__all__ = [
    "CashDrawerService",
    "LedgerService",
    "PreReconciliationCheck",
    "ReconciliationResult",
    "RefundPreview",
    "RefundService",
    "SequenceConfig",
    "SequenceService",
    "TransactionNumberService",
]
