# callbilling/routers/admin_credits.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from callbilling.db.session import get_db
from callbilling.dependencies.auth import AdminContext, require_admin
from callbilling.errors import LedgerError
from callbilling.models.credit_transaction import TransactionType
from callbilling.services.call_sync import sync_provider_calls
from callbilling.services.credit_ledger import credit, debit, get_credit_account, open_credit_account
from callbilling.services.pricing import format_currency, round_currency
from callbilling.services.provider_client import ProviderClient, get_provider_client
from callbilling.services.reconciliation import backfill_unbilled_calls, reconcile_missing_transactions
from callbilling.services.transaction_recorder import list_transactions, record_transaction

router = APIRouter(prefix="/admin", tags=["admin-credits"])


class CreditAdjustmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    company_id: str = Field(alias="companyId", min_length=1)
    # Positive tops up, negative deducts
    amount: Decimal
    description: Optional[str] = None


class CreditAdjustmentResponse(BaseModel):
    success: bool
    user_id: str
    new_balance: float
    is_blocked: bool
    transaction_id: Optional[int]
    message: str


class OpenAccountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    company_id: Optional[str] = Field(default=None, alias="companyId")
    initial_balance: Decimal = Field(default=Decimal("0"), alias="initialBalance", ge=0)
    warning_threshold: Optional[Decimal] = Field(default=None, alias="warningThreshold", ge=0)
    critical_threshold: Optional[Decimal] = Field(default=None, alias="criticalThreshold", ge=0)


class CreditAccountResponse(BaseModel):
    user_id: str
    company_id: Optional[str]
    current_balance: float
    warning_threshold: float
    critical_threshold: float
    is_blocked: bool
    updated_at: datetime


class BackfillRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = Field(default=False, alias="dryRun")


def _account_response(account) -> CreditAccountResponse:
    return CreditAccountResponse(
        user_id=account.user_id,
        company_id=account.company_id,
        current_balance=float(account.current_balance),
        warning_threshold=float(account.warning_threshold),
        critical_threshold=float(account.critical_threshold),
        is_blocked=account.is_blocked,
        updated_at=account.updated_at,
    )


@router.post("/credits/adjust", response_model=CreditAdjustmentResponse)
def adjust_credits(
    payload: CreditAdjustmentRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
):
    """
    Manual top-up or deduction by an administrator.

    - amount > 0 -> ledger credit (may unblock the account)
    - amount < 0 -> ledger debit (rejected if the account is blocked)
    """
    amount = round_currency(payload.amount)
    if amount == 0:
        raise HTTPException(status_code=400, detail="amount must be non-zero")

    try:
        if amount > 0:
            result = credit(
                db,
                payload.user_id,
                amount,
                payload.description or f"Admin credit of {format_currency(amount)}",
                transaction_type=TransactionType.ADMIN_CREDIT,
                created_by=admin.user,
            )
            return CreditAdjustmentResponse(
                success=True,
                user_id=payload.user_id,
                new_balance=float(result.new_balance),
                is_blocked=result.is_blocked,
                transaction_id=result.transaction.id if result.transaction else None,
                message=f"Balance updated successfully. Added {format_currency(amount)}",
            )

        deduction = -amount
        result = debit(db, payload.user_id, deduction)
    except LedgerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    txn = record_transaction(
        db,
        user_id=payload.user_id,
        company_id=result.company_id,
        amount=-deduction,
        transaction_type=TransactionType.ADMIN_DEBIT,
        description=payload.description or f"Admin debit of {format_currency(deduction)}",
        balance_after=result.new_balance,
        created_by=admin.user,
    )
    return CreditAdjustmentResponse(
        success=True,
        user_id=payload.user_id,
        new_balance=float(result.new_balance),
        is_blocked=result.was_blocked,
        transaction_id=txn.id if txn else None,
        message=f"Balance updated successfully. Deducted {format_currency(deduction)}",
    )


@router.post("/credits/accounts", response_model=CreditAccountResponse)
def create_credit_account(
    payload: OpenAccountRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
):
    try:
        account = open_credit_account(
            db,
            user_id=payload.user_id,
            company_id=payload.company_id,
            initial_balance=payload.initial_balance,
            warning_threshold=payload.warning_threshold,
            critical_threshold=payload.critical_threshold,
            created_by=admin.user,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _account_response(account)


@router.get("/credits/{user_id}", response_model=CreditAccountResponse)
def get_credit_balance(
    user_id: str,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
):
    account = get_credit_account(db, user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Credit account not found")
    return _account_response(account)


@router.get("/credits/{user_id}/transactions")
def get_transaction_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    txns = list_transactions(db, user_id, limit=limit)
    return {
        "user_id": user_id,
        "transactions": [
            {
                "id": t.id,
                "amount": float(t.amount),
                "transaction_type": t.transaction_type,
                "description": t.description,
                "call_id": t.call_id,
                "balance_after": float(t.balance_after),
                "created_by": t.created_by,
                "created_at": t.created_at.isoformat(),
            }
            for t in txns
        ],
    }


@router.post("/billing/backfill")
def backfill_charges(
    payload: BackfillRequest,
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Replay completed-but-unbilled calls through the normal billing path."""
    report = backfill_unbilled_calls(db, limit=payload.limit, dry_run=payload.dry_run)
    return {
        "dry_run": report.dry_run,
        "examined": report.examined,
        "charged": report.charged,
        "duplicates": report.duplicates,
        "skipped": report.skipped,
        "total_amount": float(report.total_amount),
        "failures": report.failures,
    }


@router.post("/billing/reconcile")
def reconcile_transactions(
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
) -> Dict[str, int]:
    """Rebuild call_charge entries lost after a committed debit."""
    return {"reconciled": reconcile_missing_transactions(db)}


@router.post("/billing/sync")
def sync_calls_from_provider(
    db: Session = Depends(get_db),
    admin: AdminContext = Depends(require_admin),
    provider: ProviderClient = Depends(get_provider_client),
) -> Dict[str, Any]:
    """Pull calls from the provider API and bill the ones whose webhooks never arrived."""
    return sync_provider_calls(db, provider).as_dict()
