from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from creditjobs.db.base import Base


class Job(Base):
    __tablename__ = "jobs"

    job_id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, nullable=False, index=True)
    feature = Column(String, nullable=True)
    provider = Column(String, nullable=False)
    provider_task_id = Column(String, nullable=True)
    cost = Column(Integer, nullable=False, default=0)
    state = Column(String, nullable=False, index=True)
    # Terminal state kept after the job moves to "settled"
    outcome = Column(String, nullable=True)
    spec = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    poll_interval = Column(Float, nullable=False)
    max_wall_clock = Column(Float, nullable=False)
    # Caller went away while polling; reconciliation continues the job
    detached = Column(Boolean, nullable=False, default=False, index=True)
    result_ref = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    settlement_transaction_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=True)
    terminal_at = Column(DateTime(timezone=True), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
