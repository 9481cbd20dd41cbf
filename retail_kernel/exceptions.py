"""
Typed Exception Hierarchy for the Retail Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A till, a back-office job and a manager console all call the same kernel.
Each of them must tell "the cashier typed something wrong" apart from
"the business rules forbid this" without parsing message strings.

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        refunds.process_refund(number, lines, ...)
    except RefundRejectedError as e:
        show_errors(e.errors)
        api_response(code=e.code, transaction=e.transaction_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RetailKernelError (base)
    |
    +-- InvalidInputError                 rejected before any side effect
    |   +-- InvalidAmountError
    |   +-- InvalidPercentageError
    |   +-- MissingRequiredFieldError
    |   +-- InvalidTransactionNumberError
    |   +-- InvalidSequenceConfigError
    |   +-- InvalidSerialComponentError
    |   +-- InvalidDateRangeError
    |   +-- InvalidPaginationError
    |   +-- InvalidActorError
    |   +-- InvalidDenominationError
    |   +-- DenominationMismatchError
    |
    +-- OperationNotPermittedError        business rule violation
        +-- SequenceError
        |   +-- SequenceNotConfiguredError
        |   +-- SequenceInactiveError
        |   +-- SequenceAlreadyExistsError
        |   +-- SequenceRegressionError
        |
        +-- TransactionError
        |   +-- TransactionNotFoundError
        |   +-- InvalidStatusTransitionError
        |   +-- InsufficientPaymentError
        |
        +-- RefundError
        |   +-- RefundRejectedError
        |
        +-- CashDrawerError
            +-- CashSessionNotFoundError
            +-- CashSessionAlreadyOpenError
            +-- CashSessionNotOpenError
            +-- ManagerApprovalRequiredError

Reconciliation variance beyond policy is NOT an exception.  It is returned
as ReconciliationResult(success=False) so the caller can route it to a
manager.  Database failures (sqlalchemy.exc.*) are never wrapped; they
propagate unchanged after the owning orchestrator has rolled back.
"""

from decimal import Decimal


class RetailKernelError(Exception):
    """
    Base exception for all retail kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RETAIL_KERNEL_ERROR"


# =============================================================================
# Invalid input
# =============================================================================


class InvalidInputError(RetailKernelError):
    """Base for malformed or out-of-range input."""

    code: str = "INVALID_INPUT"


class InvalidAmountError(InvalidInputError):
    """A monetary amount or quantity is outside its allowed range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: Decimal | int, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value}: {reason}")


class InvalidPercentageError(InvalidInputError):
    """Percentage outside the inclusive range 0-100."""

    code: str = "INVALID_PERCENTAGE"

    def __init__(self, percentage: Decimal):
        self.percentage = percentage
        super().__init__(
            f"Percentage must be between 0 and 100, got {percentage}"
        )


class InvalidChoiceError(InvalidInputError):
    """A value is not one of the members of a closed vocabulary."""

    code: str = "INVALID_CHOICE"

    def __init__(self, field: str, value: object, allowed: list[str]):
        self.field = field
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid {field} {value!r}; expected one of {', '.join(allowed)}"
        )


class MissingRequiredFieldError(InvalidInputError):
    """A required field or collection is empty."""

    code: str = "MISSING_REQUIRED_FIELD"

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class InvalidTransactionNumberError(InvalidInputError):
    """Transaction number does not match any known format."""

    code: str = "INVALID_TRANSACTION_NUMBER"

    def __init__(self, transaction_number: str, reason: str):
        self.transaction_number = transaction_number
        self.reason = reason
        super().__init__(
            f"Invalid transaction number '{transaction_number}': {reason}"
        )


class InvalidSequenceConfigError(InvalidInputError):
    """Sequence prefix, padding or starting value is invalid."""

    code: str = "INVALID_SEQUENCE_CONFIG"

    def __init__(self, type_code: str, reason: str):
        self.type_code = type_code
        self.reason = reason
        super().__init__(f"Invalid sequence configuration for {type_code}: {reason}")


class InvalidSerialComponentError(InvalidInputError):
    """A batch or serial number component is out of range or malformed."""

    code: str = "INVALID_SERIAL_COMPONENT"

    def __init__(self, component: str, value: object, reason: str):
        self.component = component
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {component} '{value}': {reason}")


class InvalidDateRangeError(InvalidInputError):
    """End of a query window precedes its start."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start: object, end: object):
        self.start = start
        self.end = end
        super().__init__(f"End date {end} must not be before start date {start}")


class InvalidPaginationError(InvalidInputError):
    """Page number or page size out of range."""

    code: str = "INVALID_PAGINATION"

    def __init__(self, page: int, page_size: int):
        self.page = page
        self.page_size = page_size
        super().__init__(
            f"Invalid pagination: page={page} (must be >= 1), "
            f"page_size={page_size} (must be 1-100)"
        )


class InvalidActorError(InvalidInputError):
    """Cashier or manager id is not a positive user id."""

    code: str = "INVALID_ACTOR"

    def __init__(self, role: str, actor_id: int):
        self.role = role
        self.actor_id = actor_id
        super().__init__(f"Invalid {role} id: {actor_id}")


class InvalidDenominationError(InvalidInputError):
    """Denomination is not legal tender or its count is negative."""

    code: str = "INVALID_DENOMINATION"

    def __init__(self, denomination: Decimal, count: int):
        self.denomination = denomination
        self.count = count
        super().__init__(f"Invalid denomination {denomination} x {count}")


class DenominationMismatchError(InvalidInputError):
    """Counted denominations do not add up to the declared cash amount."""

    code: str = "DENOMINATION_MISMATCH"

    def __init__(self, declared: Decimal, counted: Decimal):
        self.declared = declared
        self.counted = counted
        super().__init__(
            f"Denomination breakdown ({counted}) does not match "
            f"declared amount ({declared})"
        )


# =============================================================================
# Operation not permitted
# =============================================================================


class OperationNotPermittedError(RetailKernelError):
    """Base for business-rule violations.  No partial state is written."""

    code: str = "OPERATION_NOT_PERMITTED"


class SequenceError(OperationNotPermittedError):
    """Base exception for counter store errors."""

    code: str = "SEQUENCE_ERROR"


class SequenceNotConfiguredError(SequenceError):
    """No sequence configuration exists for the transaction type."""

    code: str = "SEQUENCE_NOT_CONFIGURED"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(
            f"No sequence configured for transaction type {type_code}"
        )


class SequenceInactiveError(SequenceError):
    """The sequence exists but has been deactivated."""

    code: str = "SEQUENCE_INACTIVE"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Sequence for transaction type {type_code} is inactive")


class SequenceAlreadyExistsError(SequenceError):
    """A sequence configuration already exists for the type."""

    code: str = "SEQUENCE_ALREADY_EXISTS"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Sequence for transaction type {type_code} already exists")


class SequenceRegressionError(SequenceError):
    """Attempt to move a sequence backwards, which would re-issue numbers."""

    code: str = "SEQUENCE_REGRESSION"

    def __init__(self, type_code: str, current_value: int, requested_value: int):
        self.type_code = type_code
        self.current_value = current_value
        self.requested_value = requested_value
        super().__init__(
            f"Cannot decrease sequence {type_code} from {current_value} "
            f"to {requested_value}"
        )


class TransactionError(OperationNotPermittedError):
    """Base exception for ledger errors."""

    code: str = "TRANSACTION_ERROR"


class TransactionNotFoundError(TransactionError):
    """No transaction header matches the number or id."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction not found: {reference}")


class InvalidStatusTransitionError(TransactionError):
    """The requested status change would move a transaction backwards."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, transaction_number: str, current_status: str, target_status: str):
        self.transaction_number = transaction_number
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Transaction {transaction_number} cannot move from "
            f"{current_status} to {target_status}"
        )


class InsufficientPaymentError(TransactionError):
    """Tendered amount does not cover the sale total."""

    code: str = "INSUFFICIENT_PAYMENT"

    def __init__(self, total: Decimal, tendered: Decimal):
        self.total = total
        self.tendered = tendered
        super().__init__(f"Payment of {tendered} does not cover total {total}")


class RefundError(OperationNotPermittedError):
    """Base exception for refund errors."""

    code: str = "REFUND_ERROR"


class RefundRejectedError(RefundError):
    """Refund failed validation; nothing was written."""

    code: str = "REFUND_REJECTED"

    def __init__(self, transaction_number: str, errors: list[str]):
        self.transaction_number = transaction_number
        self.errors = list(errors)
        super().__init__(
            f"Refund against {transaction_number} rejected: " + "; ".join(self.errors)
        )


class CashDrawerError(OperationNotPermittedError):
    """Base exception for cash drawer session errors."""

    code: str = "CASH_DRAWER_ERROR"


class CashSessionNotFoundError(CashDrawerError):
    """No cash drawer session with the id."""

    code: str = "CASH_SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Cash drawer session not found: {session_id}")


class CashSessionAlreadyOpenError(CashDrawerError):
    """The cashier already has an open drawer session."""

    code: str = "CASH_SESSION_ALREADY_OPEN"

    def __init__(self, cashier_id: int, session_id: str):
        self.cashier_id = cashier_id
        self.session_id = session_id
        super().__init__(
            f"Cashier {cashier_id} already has an open session ({session_id})"
        )


class CashSessionNotOpenError(CashDrawerError):
    """The session has already been reconciled."""

    code: str = "CASH_SESSION_NOT_OPEN"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Cash drawer session {session_id} is {status}, not Open")


class ManagerApprovalRequiredError(CashDrawerError):
    """The operation exceeds a threshold and no manager id was supplied."""

    code: str = "MANAGER_APPROVAL_REQUIRED"

    def __init__(self, operation: str, amount: Decimal, threshold: Decimal):
        self.operation = operation
        self.amount = amount
        self.threshold = threshold
        super().__init__(
            f"{operation} of {amount} exceeds {threshold} - manager approval required"
        )
