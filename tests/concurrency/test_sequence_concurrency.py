"""
Concurrency tests for counter allocation and refunds.

Counter allocation runs against a file-backed SQLite database so several
connections really compete for the counter row.  The refund race needs
row locks and only runs against PostgreSQL.

Skip with: pytest -m "not slow_locks"
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from retail_kernel.db.base import Base
from retail_kernel.db.engine import get_session
from retail_kernel.domain.clock import DeterministicClock
from retail_kernel.domain.dtos import RefundLineInput
from retail_kernel.exceptions import RefundRejectedError
from retail_kernel.models.transaction import PaymentMethod, RefundReason
from retail_kernel.services import RefundService, SequenceService
from tests.conftest import CASHIER_ID, MANAGER_ID, get_database_url, is_postgres_url

pytestmark = pytest.mark.slow_locks

WORKERS = 8
PER_WORKER = 10


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'counters.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    with Session(engine) as setup:
        SequenceService(setup, DeterministicClock()).create_sequence("SALE", MANAGER_ID)
        setup.commit()
    yield engine
    engine.dispose()


def _allocate(engine, barrier, count):
    barrier.wait()
    values = []
    for _ in range(count):
        with Session(engine) as session:
            values.append(SequenceService(session, DeterministicClock()).next_value("SALE"))
            session.commit()
    return values


class TestCounterUnderContention:

    def test_values_unique_and_contiguous(self, file_engine):
        barrier = threading.Barrier(WORKERS)
        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            futures = [
                pool.submit(_allocate, file_engine, barrier, PER_WORKER) for _ in range(WORKERS)
            ]
            results = [f.result() for f in futures]

        values = [v for worker in results for v in worker]
        assert len(values) == len(set(values))
        assert sorted(values) == list(range(1, WORKERS * PER_WORKER + 1))

    def test_each_worker_sees_increasing_values(self, file_engine):
        barrier = threading.Barrier(WORKERS)
        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(
                pool.map(lambda _: _allocate(file_engine, barrier, PER_WORKER), range(WORKERS))
            )

        for worker in results:
            assert worker == sorted(worker)

    def test_rolled_back_values_are_reissued(self, file_engine):
        with Session(file_engine) as session:
            SequenceService(session, DeterministicClock()).next_value("SALE")
            session.rollback()

        with Session(file_engine) as session:
            assert SequenceService(session, DeterministicClock()).next_value("SALE") == 1
            session.commit()


@pytest.mark.postgres
@pytest.mark.skipif(
    not is_postgres_url(get_database_url()), reason="row locks need PostgreSQL"
)
class TestRefundRace:

    def test_only_one_full_refund_wins(self, make_sale, deterministic_clock, retail_config):
        sale = make_sale("1000.00")
        barrier = threading.Barrier(2)

        def _refund():
            session = get_session()
            try:
                service = RefundService(
                    session, deterministic_clock, policy=retail_config.refunds
                )
                barrier.wait()
                return service.process_refund(
                    sale.transaction_number,
                    [RefundLineInput("PRD-001", 1, Decimal("1000.00"))],
                    PaymentMethod.CASH,
                    RefundReason.CUSTOMER_REQUEST,
                    CASHIER_ID,
                )
            except RefundRejectedError as exc:
                return exc
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(lambda _: _refund(), range(2)))

        rejected = [o for o in outcomes if isinstance(o, RefundRejectedError)]
        assert len(rejected) == 1
