from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(min_length=1, max_length=64)
    feature: str
    payload: dict[str, Any] = Field(default_factory=dict)
    wait: bool = True


class SettlementOut(BaseModel):
    transaction_id: str
    kind: str
    amount: int


class JobOut(BaseModel):
    job_id: str
    account_id: str
    feature: str | None = None
    provider: str
    state: str
    outcome: str | None = None
    cost: int
    detached: bool = False
    result_ref: str | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None
    settled_at: datetime | None = None


class JobResultOut(BaseModel):
    job_id: str | None
    state: str | None
    result_ref: str | None = None
    error: dict[str, Any] | None = None
    settlement: SettlementOut | None = None
