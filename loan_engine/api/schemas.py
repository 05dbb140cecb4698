"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field

from ..currency import Money
from ..loans import Installment, Loan, LoanPage


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class CreateLoanRequest(BaseModel):
    amount: Union[str, int, float] = Field(..., description="Principal, e.g. \"100.00\"")
    term: Union[int, str] = Field(..., description="Number of weekly installments")
    currency: Optional[str] = Field(None, description="Currency code; defaults to configured currency")


class UpdateLoanStatusRequest(BaseModel):
    status: str = Field(..., description="PENDING, APPROVED or PAID")


class InstallmentModel(BaseModel):
    id: str
    loan_id: str
    sequence: int
    amount: MoneyModel
    due_date: str
    status: str
    paid_at: Optional[str] = None

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentModel':
        return cls(
            id=installment.id,
            loan_id=installment.loan_id,
            sequence=installment.sequence,
            amount=MoneyModel.from_money(installment.amount),
            due_date=installment.due_date.isoformat(),
            status=installment.status.value,
            paid_at=installment.paid_at.isoformat() if installment.paid_at else None
        )


class LoanModel(BaseModel):
    id: str
    user_id: str
    principal: MoneyModel
    term: int
    status: str
    created_at: str
    updated_at: str
    installments: Optional[List[InstallmentModel]] = None

    @classmethod
    def from_loan(cls, loan: Loan, include_installments: bool = True) -> 'LoanModel':
        return cls(
            id=loan.id,
            user_id=loan.user_id,
            principal=MoneyModel.from_money(loan.principal),
            term=loan.term,
            status=loan.status.value,
            created_at=loan.created_at.isoformat(),
            updated_at=loan.updated_at.isoformat(),
            installments=(
                [InstallmentModel.from_installment(i) for i in loan.installments]
                if include_installments else None
            )
        )


class LoanPageModel(BaseModel):
    loans: List[LoanModel]
    total_count: int
    total_pages: int
    current_page: int

    @classmethod
    def from_page(cls, page: LoanPage) -> 'LoanPageModel':
        return cls(
            loans=[LoanModel.from_loan(loan, include_installments=False) for loan in page.loans],
            total_count=page.total_count,
            total_pages=page.total_pages,
            current_page=page.current_page
        )


class PaymentResponse(BaseModel):
    message: str
    installment: InstallmentModel
