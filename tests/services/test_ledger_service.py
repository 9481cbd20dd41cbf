"""
Tests for LedgerService: sales, voids and account payments.

Covers:
- Sale pricing, numbering and payment settlement
- All-or-nothing persistence of header, lines and payment
- The status state machine on void
- Payments on account
- Structured log events
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from retail_kernel.domain.dtos import PaymentInput, RefundLineInput, SaleLineInput
from retail_kernel.exceptions import (
    InsufficientPaymentError,
    InvalidActorError,
    InvalidAmountError,
    InvalidChoiceError,
    InvalidStatusTransitionError,
    MissingRequiredFieldError,
    SequenceInactiveError,
    TransactionNotFoundError,
)
from retail_kernel.models.transaction import (
    Payment,
    PaymentMethod,
    RefundReason,
    TransactionStatus,
    TransactionType,
)
from retail_kernel.services import LedgerService
from tests.conftest import CASHIER_ID, MANAGER_ID


def _line(price: str, quantity: int = 1, code: str = "PRD-001", discount: str = "0.00"):
    return SaleLineInput(code, Decimal(price), quantity, Decimal(discount))


class TestCreateSale:
    """Recording a completed sale."""

    def test_single_line_sale(self, ledger_service):
        result = ledger_service.create_sale(
            lines=[_line("700.00")],
            payment=PaymentInput(PaymentMethod.CASH, Decimal("700.00")),
            processed_by=CASHIER_ID,
        )

        assert result.transaction_number == "SALE-00001"
        assert result.subtotal == Decimal("608.70")
        assert result.tax_amount == Decimal("91.30")
        assert result.total_amount == Decimal("700.00")
        assert result.change_given == Decimal("0.00")
        assert result.line_count == 1

    def test_persisted_header_lines_and_payment(self, ledger_service):
        result = ledger_service.create_sale(
            lines=[_line("700.00")],
            payment=PaymentInput(PaymentMethod.CASH, Decimal("700.00")),
            processed_by=CASHIER_ID,
            customer_id=55,
            customer_name="Thandi Mokoena",
        )

        txn = ledger_service.get_transaction(result.transaction_number)
        assert txn.transaction_type == TransactionType.SALE
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.customer_id == 55
        assert txn.processed_by_id == CASHIER_ID
        assert len(txn.lines) == 1
        assert txn.lines[0].line_total == Decimal("700.00")

        payments = ledger_service.get_payments(result.transaction_number)
        assert len(payments) == 1
        assert payments[0].amount == Decimal("700.00")
        assert payments[0].is_refund is False

    def test_multi_line_with_discount(self, ledger_service):
        result = ledger_service.create_sale(
            lines=[_line("100.00", 2, "PRD-001", "20.00"), _line("10.00", 1, "PRD-002")],
            payment=PaymentInput(PaymentMethod.CARD, Decimal("190.00")),
            processed_by=CASHIER_ID,
        )

        assert result.total_amount == Decimal("190.00")
        assert result.subtotal == Decimal("165.22")
        assert result.tax_amount == Decimal("24.78")
        assert result.discount_amount == Decimal("20.00")

        txn = ledger_service.get_transaction(result.transaction_number)
        assert [l.line_number for l in txn.lines] == [1, 2]
        assert sum(l.line_total for l in txn.lines) == txn.total_amount
        assert sum(l.subtotal for l in txn.lines) == txn.subtotal
        assert sum(l.tax_amount for l in txn.lines) == txn.tax_amount

    def test_cash_change(self, ledger_service):
        result = ledger_service.create_sale(
            lines=[_line("700.00")],
            payment=PaymentInput(PaymentMethod.CASH, Decimal("1000.00")),
            processed_by=CASHIER_ID,
        )

        assert result.amount_tendered == Decimal("1000.00")
        assert result.change_given == Decimal("300.00")

        payment = ledger_service.get_payments(result.transaction_number)[0]
        assert payment.amount == Decimal("700.00")
        assert payment.amount_tendered == Decimal("1000.00")
        assert payment.change_given == Decimal("300.00")

    def test_no_change_on_eft(self, ledger_service):
        with pytest.raises(InvalidAmountError):
            ledger_service.create_sale(
                lines=[_line("700.00")],
                payment=PaymentInput(PaymentMethod.EFT, Decimal("750.00")),
                processed_by=CASHIER_ID,
            )

    def test_insufficient_payment(self, ledger_service, transaction_selector, sequence_service):
        with pytest.raises(InsufficientPaymentError):
            ledger_service.create_sale(
                lines=[_line("700.00")],
                payment=PaymentInput(PaymentMethod.CASH, Decimal("699.99")),
                processed_by=CASHIER_ID,
            )

        assert transaction_selector.search("SALE") == []
        assert sequence_service.current_value("SALE") == 0

    def test_numbers_are_consecutive(self, make_sale):
        numbers = [make_sale("10.00").transaction_number for _ in range(3)]
        assert numbers == ["SALE-00001", "SALE-00002", "SALE-00003"]

    @pytest.mark.parametrize(
        "lines, payment, error",
        [
            ([], PaymentInput(PaymentMethod.CASH, Decimal("1.00")), MissingRequiredFieldError),
            ([_line("1.00")], None, MissingRequiredFieldError),
            ([_line("1.00", 0)], PaymentInput(PaymentMethod.CASH, Decimal("1.00")), InvalidAmountError),
            ([_line("1.00", code=" ")], PaymentInput(PaymentMethod.CASH, Decimal("1.00")), MissingRequiredFieldError),
            ([_line("1.00")], PaymentInput(PaymentMethod.CASH, Decimal("-1.00")), InvalidAmountError),
            ([_line("1.00")], PaymentInput("Bitcoin", Decimal("1.00")), InvalidChoiceError),
        ],
    )
    def test_invalid_input(self, ledger_service, lines, payment, error):
        with pytest.raises(error):
            ledger_service.create_sale(lines=lines, payment=payment, processed_by=CASHIER_ID)

    def test_cashier_required(self, ledger_service):
        with pytest.raises(InvalidActorError):
            ledger_service.create_sale(
                lines=[_line("1.00")],
                payment=PaymentInput(PaymentMethod.CASH, Decimal("1.00")),
                processed_by=0,
            )

    def test_logs_started_and_completed(self, ledger_service, captured_logs):
        ledger_service.create_sale(
            lines=[_line("10.00")],
            payment=PaymentInput(PaymentMethod.CASH, Decimal("10.00")),
            processed_by=CASHIER_ID,
        )

        records = {r["message"]: r for r in captured_logs()}
        assert "sale_started" in records
        completed = records["sale_completed"]
        assert completed["transaction_number"] == "SALE-00001"
        assert completed["actor_id"] == str(CASHIER_ID)
        assert "duration_ms" in completed


class TestSaleAtomicity:
    """Header, lines and payment persist together or not at all."""

    def test_failed_payment_write_rolls_back_everything(
        self, session, ledger_service, transaction_selector, sequence_service, monkeypatch
    ):
        original_add = session.add

        def failing_add(instance, *args, **kwargs):
            if isinstance(instance, Payment):
                raise RuntimeError("payment store unavailable")
            return original_add(instance, *args, **kwargs)

        monkeypatch.setattr(session, "add", failing_add)

        with pytest.raises(RuntimeError):
            ledger_service.create_sale(
                lines=[_line("700.00")],
                payment=PaymentInput(PaymentMethod.CASH, Decimal("700.00")),
                processed_by=CASHIER_ID,
            )

        monkeypatch.undo()
        assert transaction_selector.get_by_number("SALE-00001") is None
        assert sequence_service.current_value("SALE") == 0

    def test_failure_logged_with_exception(
        self, ledger_service, sequence_service, captured_logs
    ):
        sequence_service.deactivate_sequence("SALE", MANAGER_ID)

        with pytest.raises(SequenceInactiveError):
            ledger_service.create_sale(
                lines=[_line("10.00")],
                payment=PaymentInput(PaymentMethod.CASH, Decimal("10.00")),
                processed_by=CASHIER_ID,
            )

        failed = [r for r in captured_logs() if r["message"] == "sale_failed"]
        assert failed[0]["exc_type"] == "SequenceInactiveError"
        assert failed[0]["exc_code"] == "SEQUENCE_INACTIVE"

    def test_caller_owned_transaction(
        self, session, deterministic_clock, number_service, transaction_selector
    ):
        service = LedgerService(
            session, deterministic_clock, number_service=number_service, auto_commit=False
        )
        result = service.create_sale(
            lines=[_line("10.00")],
            payment=PaymentInput(PaymentMethod.CASH, Decimal("10.00")),
            processed_by=CASHIER_ID,
        )
        assert transaction_selector.get_by_number(result.transaction_number) is not None

        session.rollback()

        assert transaction_selector.get_by_number(result.transaction_number) is None


class TestVoid:
    """Cancelling headers through the state machine."""

    def test_void_completed_sale(self, ledger_service, make_sale, deterministic_clock):
        sale = make_sale("100.00")
        deterministic_clock.advance(60)

        voided = ledger_service.void_transaction(sale.transaction_number, "Customer changed mind", MANAGER_ID)

        assert voided.status == TransactionStatus.CANCELLED
        assert voided.is_voided
        assert voided.void_reason == "Customer changed mind"
        assert voided.voided_at == deterministic_clock.now()
        assert "VOIDED: Customer changed mind" in voided.notes

    def test_void_by_id(self, ledger_service, make_sale):
        sale = make_sale("100.00")
        voided = ledger_service.void_transaction(sale.transaction_id, "Rung twice", MANAGER_ID)
        assert voided.status == TransactionStatus.CANCELLED

    def test_void_twice_rejected(self, ledger_service, make_sale):
        sale = make_sale("100.00")
        ledger_service.void_transaction(sale.transaction_number, "Rung twice", MANAGER_ID)

        with pytest.raises(InvalidStatusTransitionError):
            ledger_service.void_transaction(sale.transaction_number, "Again", MANAGER_ID)

    def test_refunded_sale_cannot_be_voided(self, ledger_service, refund_service, make_sale):
        sale = make_sale("100.00")
        refund_service.process_refund(
            sale.transaction_number,
            [RefundLineInput("PRD-001", 1, Decimal("100.00"))],
            PaymentMethod.CASH,
            RefundReason.CUSTOMER_REQUEST,
            CASHIER_ID,
        )

        with pytest.raises(InvalidStatusTransitionError):
            ledger_service.void_transaction(sale.transaction_number, "Too late", MANAGER_ID)

    def test_void_unknown(self, ledger_service, installed_sequences):
        with pytest.raises(TransactionNotFoundError):
            ledger_service.void_transaction("SALE-99999", "Missing", MANAGER_ID)
        with pytest.raises(TransactionNotFoundError):
            ledger_service.void_transaction(uuid4(), "Missing", MANAGER_ID)

    def test_reason_required(self, ledger_service, make_sale):
        sale = make_sale("100.00")
        with pytest.raises(MissingRequiredFieldError):
            ledger_service.void_transaction(sale.transaction_number, "  ", MANAGER_ID)

    def test_void_logged(self, ledger_service, make_sale, captured_logs):
        sale = make_sale("100.00")
        ledger_service.void_transaction(sale.transaction_number, "Rung twice", MANAGER_ID)

        voided = [r for r in captured_logs() if r["message"] == "transaction_voided"]
        assert voided[0]["previous_status"] == "Completed"


class TestAccountPayments:
    """Money paid onto a customer account."""

    def test_records_payment_with_pay_reference(self, ledger_service, payment_selector):
        payment = ledger_service.create_account_payment(
            55, PaymentInput(PaymentMethod.EFT, Decimal("250.00")), CASHIER_ID
        )

        assert payment.transaction_id is None
        assert payment.payment_reference == "PAY-00001"
        assert payment.amount == Decimal("250.00")
        assert payment.customer_id == 55
        assert [p.id for p in payment_selector.get_account_payments(55)] == [payment.id]

    def test_supplied_reference_kept(self, ledger_service, sequence_service):
        payment = ledger_service.create_account_payment(
            55, PaymentInput(PaymentMethod.EFT, Decimal("250.00"), "BANK-REF-9"), CASHIER_ID
        )

        assert payment.payment_reference == "BANK-REF-9"
        assert sequence_service.current_value("PAY") == 0

    def test_zero_amount_rejected(self, ledger_service):
        with pytest.raises(InvalidAmountError):
            ledger_service.create_account_payment(
                55, PaymentInput(PaymentMethod.CASH, Decimal("0.00")), CASHIER_ID
            )

    def test_customer_required(self, ledger_service):
        with pytest.raises(InvalidActorError):
            ledger_service.create_account_payment(
                0, PaymentInput(PaymentMethod.CASH, Decimal("10.00")), CASHIER_ID
            )


class TestReads:

    def test_unknown_transaction(self, ledger_service, installed_sequences):
        with pytest.raises(TransactionNotFoundError):
            ledger_service.get_transaction("SALE-00404")
