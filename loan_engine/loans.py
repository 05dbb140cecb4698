"""
Loan Records Module

Loan and installment records, the status enumeration shared by both, and
their conversion to and from storage dictionaries.
"""

from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import math

from .currency import Money
from .errors import ValidationError
from .storage import StorageRecord


class LoanStatus(Enum):
    """Status of a loan or installment, in forward order"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"

    @property
    def rank(self) -> int:
        """Position in the forward order PENDING < APPROVED < PAID"""
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> 'LoanStatus':
        """Accept a LoanStatus or its (case-insensitive) string value"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        allowed = ", ".join(s.value for s in cls)
        raise ValidationError("status", f"Invalid status {value!r}; expected one of {allowed}")


_STATUS_RANK = {LoanStatus.PENDING: 0, LoanStatus.APPROVED: 1, LoanStatus.PAID: 2}


@dataclass
class Installment(StorageRecord):
    """One scheduled repayment of a loan"""
    loan_id: str
    sequence: int                       # 1-based position in the schedule
    amount: Money
    due_date: date
    status: LoanStatus = LoanStatus.PENDING
    paid_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == LoanStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            sequence=data['sequence'],
            amount=Money.from_dict(data['amount']),
            due_date=date.fromisoformat(data['due_date']),
            status=LoanStatus(data['status']),
            paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
        )


@dataclass
class Loan(StorageRecord):
    """Loan with its full installment schedule"""
    user_id: str
    principal: Money
    term: int
    status: LoanStatus = LoanStatus.PENDING
    installments: List[Installment] = field(default_factory=list)

    @property
    def all_installments_paid(self) -> bool:
        """True when every installment on the loan is PAID"""
        return all(installment.is_paid for installment in self.installments)

    @property
    def amount_paid(self) -> Money:
        total = sum(i.amount.minor_units for i in self.installments if i.is_paid)
        return Money.from_minor_units(total, self.principal.currency)

    @property
    def amount_outstanding(self) -> Money:
        return Money.from_minor_units(
            self.principal.minor_units - self.amount_paid.minor_units,
            self.principal.currency
        )

    def to_dict(self) -> Dict[str, Any]:
        """Loan row without installments; those are stored separately"""
        result = super().to_dict()
        del result['installments']
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  installments: Optional[List[Installment]] = None) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            principal=Money.from_dict(data['principal']),
            term=data['term'],
            status=LoanStatus(data['status']),
            installments=sorted(installments or [], key=lambda i: i.sequence),
        )


@dataclass
class LoanPage:
    """One page of a loan listing"""
    loans: List[Loan]
    total_count: int
    current_page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)
