from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from creditjobs.db.base import Base


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_accounts_credit_balance_non_negative"),
        CheckConstraint("reserved_balance >= 0", name="ck_accounts_reserved_balance_non_negative"),
    )

    account_id = Column(String, primary_key=True)
    credit_balance = Column(Integer, nullable=False, default=0)
    # Credits held against in-flight jobs (reserved, not yet committed or refunded)
    reserved_balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
