"""
Tests for the loan repository and the atomicity guarantees the loan
lifecycle relies on: all-or-nothing writes and serialized read-check-write
"""

import sqlite3
import threading

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from loan_engine.audit import AuditTrail, AuditEventType
from loan_engine.config import LoanEngineConfig
from loan_engine.errors import ConflictError, PersistenceError
from loan_engine.loans import LoanStatus
from loan_engine.manager import LoanManager
from loan_engine.repository import StorageLoanRepository
from loan_engine.storage import InMemoryStorage, SQLiteStorage


class FailingInMemoryStorage(InMemoryStorage):
    """Fails on the Nth save to a given table"""

    def __init__(self, table: str, fail_on: int):
        super().__init__()
        self.fail_table = table
        self.fail_on = fail_on
        self.saves = 0

    def save(self, table, record_id, data):
        if table == self.fail_table:
            self.saves += 1
            if self.saves == self.fail_on:
                raise RuntimeError("disk full")
        super().save(table, record_id, data)


class FailingSQLiteStorage(SQLiteStorage):
    """Raises a driver error on the Nth save to a given table"""

    def __init__(self, table: str, fail_on: int):
        super().__init__(":memory:")
        self.fail_table = table
        self.fail_on = fail_on
        self.saves = 0

    def save(self, table, record_id, data):
        if table == self.fail_table:
            self.saves += 1
            if self.saves == self.fail_on:
                raise sqlite3.OperationalError("database is locked")
        super().save(table, record_id, data)


def make_manager(storage, audit_trail=None) -> LoanManager:
    config = LoanEngineConfig(storage_backend="memory")
    return LoanManager(StorageLoanRepository(storage), audit_trail=audit_trail, config=config)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    backend = InMemoryStorage() if request.param == "memory" else SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestStorageLoanRepository:
    """Test loan aggregate persistence"""

    def test_add_and_get_loan(self, storage):
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 3)
        repository = StorageLoanRepository(storage)

        stored = repository.get_loan(loan.id)
        assert stored.principal.amount == Decimal('100.00')
        assert [i.sequence for i in stored.installments] == [1, 2, 3]

        bare = repository.get_loan(loan.id, include_installments=False)
        assert bare.installments == []

        assert repository.get_loan("missing") is None
        assert repository.get_installment("missing") is None

    def test_save_loan_leaves_installments(self, storage):
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 3)
        repository = StorageLoanRepository(storage)

        loan.status = LoanStatus.APPROVED
        loan.installments = []
        repository.save_loan(loan)

        stored = repository.get_loan(loan.id)
        assert stored.status == LoanStatus.APPROVED
        assert len(stored.installments) == 3

    def test_page_loans(self, storage):
        manager = make_manager(storage)
        ids = [manager.create_loan("alice", "10.00", 1).id for _ in range(5)]
        manager.update_loan_status(ids[1], "APPROVED")
        repository = StorageLoanRepository(storage)

        loans, total = repository.page_loans(None, offset=2, limit=2)
        assert total == 5
        assert [loan.id for loan in loans] == ids[2:4]

        loans, total = repository.page_loans(LoanStatus.APPROVED, offset=0, limit=10)
        assert total == 1
        assert loans[0].id == ids[1]

        loans, total = repository.page_loans(None, offset=10, limit=10)
        assert loans == []
        assert total == 5


class TestAllOrNothing:
    """A storage failure mid-operation leaves no partial state"""

    @pytest.mark.parametrize("storage_cls", [FailingInMemoryStorage, FailingSQLiteStorage])
    def test_create_loan_failure_persists_nothing(self, storage_cls):
        storage = storage_cls("installments", fail_on=2)
        manager = make_manager(storage)

        with pytest.raises(PersistenceError):
            manager.create_loan("alice", "100.00", 3)

        assert storage.count("loans") == 0
        assert storage.count("installments") == 0
        storage.close()

    @pytest.mark.parametrize("storage_cls", [FailingInMemoryStorage, FailingSQLiteStorage])
    def test_status_update_failure_keeps_old_status(self, storage_cls):
        storage = storage_cls("loans", fail_on=2)
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 3)

        with pytest.raises(PersistenceError):
            manager.update_loan_status(loan.id, "APPROVED")

        assert manager.get_loan(loan.id).status == LoanStatus.PENDING
        storage.close()

    @pytest.mark.parametrize("storage_cls", [FailingInMemoryStorage, FailingSQLiteStorage])
    def test_payment_failure_keeps_installment_pending(self, storage_cls):
        storage = storage_cls("installments", fail_on=4)
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 3)

        with pytest.raises(PersistenceError):
            manager.pay_installment(loan.installments[0].id)

        assert not manager.get_loan(loan.id).installments[0].is_paid
        # The next attempt goes through
        assert manager.pay_installment(loan.installments[0].id).is_paid
        storage.close()

    @pytest.mark.parametrize("storage_cls", [FailingInMemoryStorage, FailingSQLiteStorage])
    def test_audit_failure_rolls_back_create(self, storage_cls):
        """A loan whose audit event cannot be written is not created"""
        storage = storage_cls("audit_events", fail_on=1)
        audit_trail = AuditTrail(storage)
        manager = make_manager(storage, audit_trail)

        with pytest.raises(PersistenceError):
            manager.create_loan("alice", "100.00", 3)

        assert storage.count("loans") == 0
        assert storage.count("installments") == 0
        assert storage.count("audit_events") == 0

        # The chain restarts cleanly on the next write
        loan = manager.create_loan("alice", "100.00", 3)
        events = audit_trail.get_events_for_entity("loan", loan.id)
        assert len(events) == 1
        assert events[0].metadata['sequence'] == 1
        assert events[0].previous_hash == ""
        assert audit_trail.verify_integrity()['valid']
        storage.close()

    @pytest.mark.parametrize("storage_cls", [FailingInMemoryStorage, FailingSQLiteStorage])
    def test_audit_failure_rolls_back_payment(self, storage_cls):
        storage = storage_cls("audit_events", fail_on=2)
        audit_trail = AuditTrail(storage)
        manager = make_manager(storage, audit_trail)
        loan = manager.create_loan("alice", "100.00", 3)
        installment_id = loan.installments[0].id

        with pytest.raises(PersistenceError):
            manager.pay_installment(installment_id)

        assert not manager.get_loan(loan.id).installments[0].is_paid
        assert audit_trail.get_events_for_entity("installment", installment_id) == []

        assert manager.pay_installment(installment_id).is_paid
        events = audit_trail.get_events_for_entity("installment", installment_id)
        assert [e.event_type for e in events] == [AuditEventType.INSTALLMENT_PAID]
        assert events[0].metadata['sequence'] == 2
        assert audit_trail.verify_integrity()['valid']
        storage.close()


class TestConcurrency:
    """Concurrent callers never both succeed on a single-winner operation"""

    def _race(self, target, count: int):
        barrier = threading.Barrier(count)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                target()
                outcome = "ok"
            except ConflictError:
                outcome = "conflict"
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results

    def test_concurrent_payments_single_winner(self, storage):
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 3)
        installment_id = loan.installments[0].id

        results = self._race(lambda: manager.pay_installment(installment_id), 8)

        assert results.count("ok") == 1
        assert results.count("conflict") == 7

    def test_concurrent_settlement_single_winner(self, storage):
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 2)
        for installment in loan.installments:
            manager.pay_installment(installment.id)

        results = self._race(lambda: manager.try_mark_loan_paid(loan.id), 8)

        assert results.count("ok") == 1
        assert results.count("conflict") == 7
        assert manager.get_loan(loan.id).status == LoanStatus.PAID

    def test_concurrent_payments_of_different_installments(self, storage):
        """Paying two installments of one loan at once leaves both paid"""
        manager = make_manager(storage)
        loan = manager.create_loan("alice", "100.00", 2)
        first, second = (i.id for i in loan.installments)
        barrier = threading.Barrier(2)
        errors = []

        def pay(installment_id):
            barrier.wait()
            try:
                manager.pay_installment(installment_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=pay, args=(i,)) for i in (first, second)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert manager.get_loan(loan.id).all_installments_paid
        assert manager.try_mark_loan_paid(loan.id).status == LoanStatus.PAID
        assert manager.get_loan(loan.id).status == LoanStatus.PAID

    def test_concurrent_creates_are_all_stored(self, storage):
        manager = make_manager(storage)

        results = self._race(lambda: manager.create_loan("alice", "30.00", 3), 6)

        assert results.count("ok") == 6
        loans = manager.get_user_loans("alice")
        assert len(loans) == 6
        assert all(
            sum(i.amount.minor_units for i in loan.installments) == 3000 for loan in loans
        )
