"""Selectors for the retail kernel (read side)."""

from retail_kernel.selectors.cash_drawer_selector import (
    CashDrawerSelector,
    CashMovementDTO,
    CashSessionDTO,
)
from retail_kernel.selectors.payment_selector import (
    CashFigures,
    PaymentDTO,
    PaymentMethodTotal,
    PaymentSelector,
    PaymentSummaryDTO,
)
from retail_kernel.selectors.transaction_selector import (
    TaxSummaryDTO,
    TransactionDTO,
    TransactionLineDTO,
    TransactionPage,
    TransactionSelector,
)

__all__ = [
    "CashDrawerSelector",
    "CashMovementDTO",
    "CashSessionDTO",
    "CashFigures",
    "PaymentDTO",
    "PaymentMethodTotal",
    "PaymentSelector",
    "PaymentSummaryDTO",
    "TaxSummaryDTO",
    "TransactionDTO",
    "TransactionLineDTO",
    "TransactionPage",
    "TransactionSelector",
]
