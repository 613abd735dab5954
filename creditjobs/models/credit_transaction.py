from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from creditjobs.db.base import Base


KIND_RESERVE = "reserve"
KIND_COMMIT = "commit"
KIND_REFUND = "refund"
KIND_TOPUP = "topup"

TRANSACTION_KINDS = (KIND_RESERVE, KIND_COMMIT, KIND_REFUND, KIND_TOPUP)


class CreditTransaction(Base):
    """Append-only ledger row. Never updated or deleted."""

    __tablename__ = "credit_transactions"
    __table_args__ = (UniqueConstraint("job_id", "kind", name="uq_credit_transactions_job_kind"),)

    transaction_id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # negative = debit, positive = credit
    kind = Column(String, nullable=False)  # reserve, commit, refund, topup
    reason = Column(String, nullable=False, default="")
    job_id = Column(String, nullable=True, index=True)
    # job_id on commit/refund rows: one settlement per job
    settlement_key = Column(String, nullable=True, unique=True)
    # billing event id for topups (webhook redelivery guard)
    external_ref = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
