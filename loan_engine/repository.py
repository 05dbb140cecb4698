"""
Loan Repository Module

The storage contract the loan engine depends on, plus an implementation on
top of any StorageInterface backend. A loan and its installments form one
aggregate: they are written together in one atomic block and read together.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import List, Optional, Tuple

from .loans import Installment, Loan, LoanStatus
from .storage import StorageInterface


class LoanRepository(ABC):
    """
    Durable storage of loan aggregates

    Implementations must guarantee that:
    - ``add_loan`` stores a loan and its entire schedule atomically
    - work done inside ``atomic()`` is isolated from concurrent writers, so
      a read-check-write in the block sees every previously committed write
      and no other caller can interleave with it
    """

    @abstractmethod
    def atomic(self):
        """Context manager scoping one atomic unit of work"""
        pass

    @abstractmethod
    def add_loan(self, loan: Loan) -> None:
        """Persist a new loan together with all of its installments"""
        pass

    @abstractmethod
    def get_loan(self, loan_id: str, include_installments: bool = True) -> Optional[Loan]:
        pass

    @abstractmethod
    def save_loan(self, loan: Loan) -> None:
        """Persist the loan row only; installments are left untouched"""
        pass

    @abstractmethod
    def get_installment(self, installment_id: str) -> Optional[Installment]:
        pass

    @abstractmethod
    def save_installment(self, installment: Installment) -> None:
        pass

    @abstractmethod
    def find_user_loans(self, user_id: str) -> List[Loan]:
        """All loans of a user, oldest first, with installments"""
        pass

    @abstractmethod
    def page_loans(
        self,
        status: Optional[LoanStatus],
        offset: int,
        limit: int
    ) -> Tuple[List[Loan], int]:
        """Return (loans in [offset, offset + limit), total matching count)"""
        pass


class StorageLoanRepository(LoanRepository):
    """LoanRepository backed by a StorageInterface"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.installments_table = "installments"

    @contextmanager
    def atomic(self):
        with self.storage.atomic():
            yield

    def add_loan(self, loan: Loan) -> None:
        with self.storage.atomic():
            self.storage.save(self.loans_table, loan.id, loan.to_dict())
            for installment in loan.installments:
                self.storage.save(self.installments_table, installment.id, installment.to_dict())

    def get_loan(self, loan_id: str, include_installments: bool = True) -> Optional[Loan]:
        with self.storage.atomic():
            data = self.storage.load(self.loans_table, loan_id)
            if not data:
                return None
            installments = self._load_installments(loan_id) if include_installments else None
        return Loan.from_dict(data, installments)

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        data = self.storage.load(self.installments_table, installment_id)
        if data:
            return Installment.from_dict(data)
        return None

    def save_installment(self, installment: Installment) -> None:
        self.storage.save(self.installments_table, installment.id, installment.to_dict())

    def find_user_loans(self, user_id: str) -> List[Loan]:
        with self.storage.atomic():
            rows = self.storage.find(self.loans_table, {"user_id": user_id})
            loans = [Loan.from_dict(row, self._load_installments(row['id'])) for row in rows]
        return self._ordered(loans)

    def page_loans(
        self,
        status: Optional[LoanStatus],
        offset: int,
        limit: int
    ) -> Tuple[List[Loan], int]:
        filters = {"status": status.value} if status else {}
        rows = self.storage.find(self.loans_table, filters)
        loans = self._ordered([Loan.from_dict(row) for row in rows])
        return loans[offset:offset + limit], len(loans)

    def _load_installments(self, loan_id: str) -> List[Installment]:
        rows = self.storage.find(self.installments_table, {"loan_id": loan_id})
        return sorted((Installment.from_dict(row) for row in rows), key=lambda i: i.sequence)

    @staticmethod
    def _ordered(loans: List[Loan]) -> List[Loan]:
        # Stable sort keeps storage order for loans created at the same instant
        return sorted(loans, key=lambda loan: loan.created_at)
