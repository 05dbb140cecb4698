"""
Loan endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import LoanSystem, get_current_user, get_loan_system, require_role
from .schemas import (
    CreateLoanRequest, InstallmentModel, LoanModel, LoanPageModel,
    PaymentResponse, UpdateLoanStatusRequest
)
from ..auth import AuthContext, Role
from ..errors import NotFoundError


router = APIRouter()


@router.post("/apply", status_code=status.HTTP_201_CREATED, response_model=LoanModel)
async def apply_for_loan(
    request: CreateLoanRequest,
    user: AuthContext = Depends(require_role(Role.USER)),
    system: LoanSystem = Depends(get_loan_system)
):
    """Apply for a loan; the schedule is generated immediately"""
    loan = system.loan_manager.create_loan(
        user_id=user.user_id,
        principal=request.amount,
        term=request.term,
        currency=request.currency,
        actor=user
    )
    return LoanModel.from_loan(loan)


@router.get("", response_model=LoanPageModel)
async def list_loans(
    status: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    user: AuthContext = Depends(require_role(Role.ADMIN)),
    system: LoanSystem = Depends(get_loan_system)
):
    """List loans with optional status filter (admin only)"""
    loan_page = system.loan_manager.list_loans(status=status, page=page, page_size=page_size)
    return LoanPageModel.from_page(loan_page)


@router.get("/mine", response_model=List[LoanModel])
async def get_my_loans(
    user: AuthContext = Depends(require_role(Role.USER)),
    system: LoanSystem = Depends(get_loan_system)
):
    """Get every loan of the calling user"""
    loans = system.loan_manager.get_user_loans(user.user_id)
    return [LoanModel.from_loan(loan) for loan in loans]


@router.put("/{loan_id}/status", response_model=LoanModel)
async def update_loan_status(
    loan_id: str,
    request: UpdateLoanStatusRequest,
    user: AuthContext = Depends(require_role(Role.ADMIN)),
    system: LoanSystem = Depends(get_loan_system)
):
    """Override a loan's status (admin only)"""
    loan = system.loan_manager.update_loan_status(loan_id, request.status, actor=user)
    return LoanModel.from_loan(loan)


@router.put("/{loan_id}/mark-paid", response_model=LoanModel)
async def mark_loan_paid(
    loan_id: str,
    user: AuthContext = Depends(get_current_user),
    system: LoanSystem = Depends(get_loan_system)
):
    """Settle a loan once all of its installments are paid"""
    loan = system.loan_manager.try_mark_loan_paid(loan_id, actor=user)
    return LoanModel.from_loan(loan)


@router.get("/{loan_id}", response_model=LoanModel)
async def get_loan(
    loan_id: str,
    user: AuthContext = Depends(get_current_user),
    system: LoanSystem = Depends(get_loan_system)
):
    """Get loan details with installments"""
    loan = system.loan_manager.get_loan(loan_id)
    if not user.is_admin and loan.user_id != user.user_id:
        raise NotFoundError(f"Loan {loan_id} not found")
    return LoanModel.from_loan(loan)


@router.post("/installments/{installment_id}/pay", response_model=PaymentResponse)
async def pay_installment(
    installment_id: str,
    user: AuthContext = Depends(require_role(Role.USER)),
    system: LoanSystem = Depends(get_loan_system)
):
    """Pay a single installment"""
    installment = system.loan_manager.pay_installment(installment_id, actor=user)
    return PaymentResponse(
        message="Installment paid successfully",
        installment=InstallmentModel.from_installment(installment)
    )
