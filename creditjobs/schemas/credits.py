from datetime import datetime

from pydantic import BaseModel, Field


class BalanceOut(BaseModel):
    account_id: str
    credit_balance: int
    reserved_balance: int
    available: int


class TransactionOut(BaseModel):
    transaction_id: str
    account_id: str
    amount: int
    kind: str
    reason: str | None = None
    job_id: str | None = None
    created_at: datetime | None = None


class TopUpIn(BaseModel):
    amount: int = Field(gt=0)
    reason: str = "manual top-up"
    external_ref: str | None = Field(default=None, max_length=128)
