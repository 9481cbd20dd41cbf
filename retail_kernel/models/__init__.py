"""Domain models for the retail kernel."""

from retail_kernel.models.cash_drawer import (
    CashDrawerSession,
    CashMovement,
    CashMovementType,
    CashSessionStatus,
)
from retail_kernel.models.sequence import SequenceCounter
from retail_kernel.models.transaction import (
    ALLOWED_TRANSITIONS,
    Payment,
    PaymentMethod,
    RefundReason,
    TransactionHeader,
    TransactionLine,
    TransactionStatus,
    TransactionType,
    can_transition,
)
