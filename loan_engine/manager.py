"""
Loan Manager Module

Owns the loan aggregate: creates loans with their repayment schedule,
records installment payments, applies administrative status overrides and
settles a loan once every installment on it is paid.

Every read-check-write runs inside one repository atomic block, so the
checks (already paid, all paid) are evaluated against committed state and
no concurrent caller can slip in between the check and the write.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Union
import uuid

from .audit import AuditTrail, AuditEventType
from .auth import AuthContext
from .config import LoanEngineConfig, get_config
from .currency import Currency, Money, parse_amount
from .errors import ConflictError, LoanEngineError, NotFoundError, PersistenceError, ValidationError
from .loans import Installment, Loan, LoanPage, LoanStatus
from .logging_config import get_logger, log_action
from .repository import LoanRepository
from .scheduler import RepaymentScheduler


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoanManager:
    """
    Manages the loan lifecycle from creation through settlement
    """

    def __init__(
        self,
        repository: LoanRepository,
        audit_trail: Optional[AuditTrail] = None,
        config: Optional[LoanEngineConfig] = None,
        scheduler: Optional[RepaymentScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.scheduler = scheduler or RepaymentScheduler(self.config.installment_interval_days)
        self.clock = clock or _utcnow
        self.logger = get_logger("loan_engine.loans")

    def create_loan(
        self,
        user_id: str,
        principal: Union[Money, Decimal, int, str],
        term: Union[int, str],
        currency: Optional[Union[Currency, str]] = None,
        actor: Optional[AuthContext] = None
    ) -> Loan:
        """
        Create a loan and its full repayment schedule as one unit

        Args:
            user_id: Borrower
            principal: Amount borrowed (Money, or a number in `currency`)
            term: Number of weekly installments
            currency: Loan currency; defaults to the principal's currency
                or the configured default
            actor: Caller, recorded in logs and the audit trail

        Returns:
            The created Loan with its installments

        Raises:
            ValidationError: On malformed input; nothing is persisted
            PersistenceError: If the atomic write fails; nothing is persisted
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id", "User ID is required")

        loan_currency = self._resolve_currency(currency, principal)
        amount = parse_amount(principal, loan_currency, field="principal")
        term = self._parse_term(term)

        now = self.clock()
        loan_id = str(uuid.uuid4())
        installments = self.scheduler.generate_schedule(
            amount, term, now.date(), loan_id=loan_id, created_at=now
        )
        loan = Loan(
            id=loan_id,
            created_at=now,
            updated_at=now,
            user_id=user_id,
            principal=amount,
            term=term,
            status=LoanStatus.PENDING,
            installments=installments
        )

        with self._unit_of_work("create_loan"):
            self.repository.add_loan(loan)
            self._audit(
                AuditEventType.LOAN_CREATED, "loan", loan.id, actor,
                borrower_id=user_id,
                principal=str(amount.amount),
                currency=amount.currency.code,
                term=term,
                first_due_date=installments[0].due_date.isoformat(),
                last_due_date=installments[-1].due_date.isoformat()
            )

        log_action(
            self.logger, "info", f"Loan created: {amount.to_string()} over {term} installments",
            user_id=self._actor_id(actor), action="create_loan", resource=f"loan:{loan.id}",
            extra={"borrower": user_id, "principal": amount.to_string(), "term": term}
        )
        return loan

    def update_loan_status(
        self,
        loan_id: str,
        target_status: Union[LoanStatus, str],
        actor: Optional[AuthContext] = None
    ) -> Loan:
        """
        Administrative status override

        Under the "permissive" policy any of the three statuses may be set,
        including backward moves. Under "monotonic" a backward move is a
        ConflictError. Under either policy re-setting the current status
        (PAID -> PAID included) is a no-op: nothing is written or audited.
        """
        target = LoanStatus.parse(target_status)

        with self._unit_of_work("update_loan_status"):
            loan = self._require_loan(loan_id)
            previous = loan.status

            if target == previous:
                return loan
            if self.config.status_override_policy == "monotonic" and target.rank < previous.rank:
                raise self._reject(
                    f"Loan {loan_id} cannot move from {previous.value} back to {target.value}",
                    "update_loan_status", f"loan:{loan_id}", actor
                )

            loan.status = target
            loan.updated_at = self.clock()
            self.repository.save_loan(loan)
            self._audit(
                AuditEventType.LOAN_STATUS_CHANGED, "loan", loan_id, actor,
                previous_status=previous, new_status=target,
                policy=self.config.status_override_policy
            )

        log_action(
            self.logger, "info", f"Loan status changed: {previous.value} -> {target.value}",
            user_id=self._actor_id(actor), action="update_loan_status", resource=f"loan:{loan_id}",
            extra={"previous_status": previous.value, "new_status": target.value}
        )
        return loan

    def pay_installment(
        self,
        installment_id: str,
        actor: Optional[AuthContext] = None
    ) -> Installment:
        """
        Mark one installment PAID

        Touches only the installment; the parent loan is neither read nor
        written. Of N concurrent calls on the same installment exactly one
        succeeds and the rest get ConflictError.
        """
        with self._unit_of_work("pay_installment"):
            installment = self.repository.get_installment(installment_id)
            if not installment:
                raise NotFoundError(f"Installment {installment_id} not found")

            if installment.is_paid:
                raise self._reject(
                    f"Installment {installment_id} already paid",
                    "pay_installment", f"installment:{installment_id}", actor
                )

            now = self.clock()
            installment.status = LoanStatus.PAID
            installment.paid_at = now
            installment.updated_at = now
            self.repository.save_installment(installment)
            self._audit(
                AuditEventType.INSTALLMENT_PAID, "installment", installment_id, actor,
                loan_id=installment.loan_id,
                sequence=installment.sequence,
                amount=str(installment.amount.amount)
            )

        log_action(
            self.logger, "info", f"Installment paid: {installment.amount.to_string()}",
            user_id=self._actor_id(actor), action="pay_installment",
            resource=f"installment:{installment_id}",
            extra={"loan_id": installment.loan_id, "sequence": installment.sequence}
        )
        return installment

    def try_mark_loan_paid(
        self,
        loan_id: str,
        actor: Optional[AuthContext] = None
    ) -> Loan:
        """
        Settle a loan if and only if every installment is PAID

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If the loan is already PAID or some installment
                is still outstanding; the loan is left unchanged
        """
        with self._unit_of_work("try_mark_loan_paid"):
            loan = self._require_loan(loan_id)

            if loan.status == LoanStatus.PAID:
                raise self._reject(
                    f"Loan {loan_id} already paid",
                    "try_mark_loan_paid", f"loan:{loan_id}", actor
                )

            if not loan.all_installments_paid:
                unpaid = sum(1 for i in loan.installments if not i.is_paid)
                raise self._reject(
                    f"Loan {loan_id}: not all installments paid ({unpaid} of {len(loan.installments)} outstanding)",
                    "try_mark_loan_paid", f"loan:{loan_id}", actor
                )

            previous = loan.status
            loan.status = LoanStatus.PAID
            loan.updated_at = self.clock()
            self.repository.save_loan(loan)
            self._audit(
                AuditEventType.LOAN_PAID, "loan", loan_id, actor,
                previous_status=previous,
                principal=str(loan.principal.amount),
                installments=len(loan.installments)
            )

        log_action(
            self.logger, "info", "Loan marked as paid",
            user_id=self._actor_id(actor), action="try_mark_loan_paid", resource=f"loan:{loan_id}",
            extra={"previous_status": previous.value}
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        """Get a loan with its installments"""
        return self._require_loan(loan_id)

    def get_user_loans(self, user_id: str) -> List[Loan]:
        """Get every loan of a user, oldest first"""
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id", "User ID is required")

        loans = self.repository.find_user_loans(user_id)
        if not loans:
            raise NotFoundError(f"No loans found for user {user_id}")
        return loans

    def list_loans(
        self,
        status: Optional[Union[LoanStatus, str]] = None,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> LoanPage:
        """
        List loans, optionally filtered by status, one page at a time

        Returns:
            LoanPage with total_count and total_pages = ceil(total_count / page_size)
        """
        status_filter = LoanStatus.parse(status) if status else None
        if page_size is None:
            page_size = self.config.default_page_size

        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise ValidationError("page", "Page must be a positive integer")
        if (isinstance(page_size, bool) or not isinstance(page_size, int)
                or not 1 <= page_size <= self.config.max_page_size):
            raise ValidationError(
                "page_size", f"Page size must be between 1 and {self.config.max_page_size}"
            )

        loans, total = self.repository.page_loans(
            status_filter, offset=(page - 1) * page_size, limit=page_size
        )
        return LoanPage(loans=loans, total_count=total, current_page=page, page_size=page_size)

    @contextmanager
    def _unit_of_work(self, operation: str):
        """Run a block atomically, reporting storage faults as PersistenceError"""
        try:
            with self.repository.atomic():
                yield
        except LoanEngineError:
            raise
        except Exception as e:
            self.logger.exception(f"{operation} failed in storage")
            raise PersistenceError(f"{operation} could not be completed: {e}") from e

    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.repository.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def _reject(self, message: str, action: str, resource: str,
                actor: Optional[AuthContext]) -> ConflictError:
        log_action(
            self.logger, "warning", message,
            user_id=self._actor_id(actor), action=action, resource=resource
        )
        return ConflictError(message)

    def _resolve_currency(self, currency: Optional[Union[Currency, str]], principal: Any) -> Currency:
        if isinstance(currency, Currency):
            return currency
        if currency is not None:
            return Currency.from_code(currency)
        if isinstance(principal, Money):
            return principal.currency
        return Currency.from_code(self.config.default_currency)

    @staticmethod
    def _parse_term(term: Any) -> int:
        if isinstance(term, bool) or not isinstance(term, (int, str, Decimal)):
            raise ValidationError("term", "Term must be a positive integer")

        if isinstance(term, int):
            value = term
        else:
            try:
                number = Decimal(str(term).strip())
            except InvalidOperation:
                raise ValidationError("term", f"Term must be a positive integer, got {term!r}")
            if not number.is_finite() or number != number.to_integral_value():
                raise ValidationError("term", f"Term must be a positive integer, got {term!r}")
            value = int(number)

        if value <= 0:
            raise ValidationError("term", "Term must be a positive integer")
        return value

    @staticmethod
    def _actor_id(actor: Optional[AuthContext]) -> Optional[str]:
        return actor.user_id if actor else None

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               actor: Optional[AuthContext], **metadata) -> None:
        if self.audit_trail is None or not self.config.enable_audit_logging:
            return
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
            user_id=self._actor_id(actor)
        )
