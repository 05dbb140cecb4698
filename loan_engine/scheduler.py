"""
Repayment Scheduler Module

Splits a principal into equal weekly installments using integer minor-unit
arithmetic, so the installments always sum to exactly the principal. All
rounding slack is absorbed by the final installment. A principal with fewer
minor units than the term yields zero-amount installments ahead of the last.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
import uuid

from .currency import Money
from .errors import ValidationError
from .loans import Installment, LoanStatus


class RepaymentScheduler:
    """Generates fixed-interval repayment schedules"""

    def __init__(self, interval_days: int = 7):
        if interval_days <= 0:
            raise ValueError("interval_days must be positive")
        self.interval_days = interval_days

    @staticmethod
    def split_minor_units(total: int, parts: int) -> List[int]:
        """
        Split an integer amount into equal parts, remainder on the last

        Args:
            total: Amount in minor units
            parts: Number of parts (at least 1)

        Returns:
            List of `parts` integers summing to `total`
        """
        base = total // parts
        remainder = total - base * parts
        amounts = [base] * parts
        amounts[-1] += remainder
        return amounts

    def generate_schedule(
        self,
        principal: Money,
        term: int,
        start_date: date,
        loan_id: str = "",
        created_at: Optional[datetime] = None
    ) -> List[Installment]:
        """
        Generate the installment schedule for a principal and term

        Args:
            principal: Positive amount to repay
            term: Number of installments
            start_date: Reference date; installment i falls due
                start_date + interval * (i + 1)
            loan_id: Owning loan, stamped on every installment
            created_at: Record timestamp (defaults to now, UTC)

        Returns:
            Installments ordered by due date, all PENDING

        Raises:
            ValidationError: If principal or term is invalid
        """
        self._validate(principal, term)

        now = created_at or datetime.now(timezone.utc)
        amounts = self.split_minor_units(principal.minor_units, term)
        schedule = []
        for i, units in enumerate(amounts):
            schedule.append(Installment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                sequence=i + 1,
                amount=Money.from_minor_units(units, principal.currency),
                due_date=start_date + timedelta(days=self.interval_days * (i + 1)),
                status=LoanStatus.PENDING,
            ))
        return schedule

    def _validate(self, principal: Money, term: int) -> None:
        if not isinstance(principal, Money) or not principal.is_positive():
            raise ValidationError("principal", "Principal must be a positive amount")
        if isinstance(term, bool) or not isinstance(term, int) or term <= 0:
            raise ValidationError("term", "Term must be a positive integer")
