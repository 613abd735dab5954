from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from creditjobs.api.deps import require_admin
from creditjobs.db.session import get_db
from creditjobs.models.credit_transaction import CreditTransaction
from creditjobs.schemas.credits import BalanceOut, TopUpIn, TransactionOut
from creditjobs.services.ledger.service import CreditLedger


router = APIRouter(prefix="/accounts", tags=["credits"])


def _transaction_out(row: CreditTransaction) -> TransactionOut:
    return TransactionOut(
        transaction_id=row.transaction_id,
        account_id=row.account_id,
        amount=row.amount,
        kind=row.kind,
        reason=row.reason,
        job_id=row.job_id,
        created_at=row.created_at,
    )


@router.get("/{account_id}/balance", response_model=BalanceOut)
def get_balance(account_id: str, db: Session = Depends(get_db)) -> BalanceOut:
    account = CreditLedger(db).get_account(account_id)
    if account is None:
        raise HTTPException(404, "Account not found")
    return BalanceOut(
        account_id=account.account_id,
        credit_balance=account.credit_balance,
        reserved_balance=account.reserved_balance,
        available=account.credit_balance,
    )


@router.get("/{account_id}/transactions", response_model=list[TransactionOut])
def list_transactions(
    account_id: str,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> list[TransactionOut]:
    rows = CreditLedger(db).list_transactions(account_id, limit=limit)
    return [_transaction_out(r) for r in rows]


@router.post(
    "/{account_id}/topup",
    response_model=TransactionOut,
    dependencies=[Depends(require_admin)],
)
def top_up(account_id: str, body: TopUpIn, db: Session = Depends(get_db)) -> TransactionOut:
    row = CreditLedger(db).top_up(account_id, body.amount, body.reason, external_ref=body.external_ref)
    return _transaction_out(row)
