"""
CreditLedger: the only code allowed to change account balances.

Every mutation is a conditional UPDATE plus an appended CreditTransaction,
committed as one database transaction. Callers never read-then-write a
balance themselves.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditjobs.models.account import Account
from creditjobs.models.credit_transaction import (
    KIND_COMMIT,
    KIND_REFUND,
    KIND_RESERVE,
    KIND_TOPUP,
    CreditTransaction,
)
from creditjobs.services.errors import InsufficientFundsError, Settlement
from creditjobs.utils.clock import utcnow
from creditjobs.utils.metrics import insufficient_funds_total, ledger_operations_total

logger = logging.getLogger(__name__)


class LedgerInconsistencyError(RuntimeError):
    """Account row does not hold the reserved amount a settlement expects."""


class ReservationConflictError(ValueError):
    """A job id already holds a reservation for another account or amount."""


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    account_id: str
    job_id: str
    amount: int

    @classmethod
    def from_row(cls, row: CreditTransaction) -> "Reservation":
        return cls(
            reservation_id=row.transaction_id,
            account_id=row.account_id,
            job_id=row.job_id,
            amount=-row.amount,
        )


@dataclass(frozen=True)
class AccountAudit:
    account_id: str
    credit_balance: int
    reserved_balance: int
    transactions_sum: int
    open_reserved_sum: int

    @property
    def consistent(self) -> bool:
        return (
            self.transactions_sum == self.credit_balance
            and self.open_reserved_sum == self.reserved_balance
        )


def settlement_of(row: CreditTransaction) -> Settlement:
    return Settlement(transaction_id=row.transaction_id, kind=row.kind, amount=row.amount)


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Account | None:
        return self.db.get(Account, account_id, populate_existing=True)

    def ensure_account(self, account_id: str) -> Account:
        """Accounts are created on first ledger interaction with zero balances."""
        account = self.get_account(account_id)
        if account is not None:
            return account
        try:
            account = Account(account_id=account_id, credit_balance=0, reserved_balance=0)
            self.db.add(account)
            self.db.commit()
            logger.info("ledger_account_created", extra={"account_id": account_id})
            return account
        except IntegrityError:
            # created concurrently
            self.db.rollback()
            return self.get_account(account_id)

    # ------------------------------------------------------------------
    # Reserve / commit / refund
    # ------------------------------------------------------------------

    def reserve(self, account_id: str, amount: int, job_id: str, reason: str = "") -> Reservation:
        """
        Atomically move `amount` from credit_balance to reserved_balance.
        Raises InsufficientFundsError when the balance does not cover it.
        Replaying a reserve for the same job returns the original reservation;
        a replay naming another account or amount raises ReservationConflictError.
        """
        if amount <= 0:
            raise ValueError("reserve amount must be positive")

        existing = self._find(job_id, KIND_RESERVE)
        if existing is not None:
            return self._replayed(existing, account_id, amount)

        result = self.db.execute(
            update(Account)
            .where(Account.account_id == account_id, Account.credit_balance >= amount)
            .values(
                credit_balance=Account.credit_balance - amount,
                reserved_balance=Account.reserved_balance + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            account = self.get_account(account_id)
            available = account.credit_balance if account is not None else 0
            insufficient_funds_total.inc()
            logger.info(
                "ledger_reserve_rejected",
                extra={"account_id": account_id, "job_id": job_id, "amount": amount},
            )
            raise InsufficientFundsError(account_id, amount, available)

        row = CreditTransaction(
            account_id=account_id,
            amount=-amount,
            kind=KIND_RESERVE,
            reason=reason,
            job_id=job_id,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent reserve for the same job won; ours is rolled back whole.
            self.db.rollback()
            existing = self._find(job_id, KIND_RESERVE)
            if existing is None:
                raise
            return self._replayed(existing, account_id, amount)

        ledger_operations_total.labels(operation=KIND_RESERVE).inc()
        logger.info(
            "ledger_reserve",
            extra={
                "account_id": account_id,
                "job_id": job_id,
                "amount": amount,
                "transaction_id": row.transaction_id,
            },
        )
        return Reservation.from_row(row)

    def commit(self, reservation: Reservation, reason: str = "") -> CreditTransaction:
        """Spend reserved funds. Idempotent."""
        return self._settle(reservation, KIND_COMMIT, reason)

    def refund(self, reservation: Reservation, reason: str = "") -> CreditTransaction:
        """Return reserved funds to credit_balance. Idempotent."""
        return self._settle(reservation, KIND_REFUND, reason)

    def _settle(self, reservation: Reservation, kind: str, reason: str) -> CreditTransaction:
        existing = self.get_settlement(reservation.job_id)
        if existing is not None:
            if existing.kind != kind:
                logger.warning(
                    "ledger_settlement_conflict",
                    extra={
                        "job_id": reservation.job_id,
                        "kind": kind,
                        "reason": f"already settled as {existing.kind}",
                    },
                )
            return existing

        amount = reservation.amount
        row = CreditTransaction(
            account_id=reservation.account_id,
            # Commit moves nothing out of credit_balance; reserve already did.
            amount=amount if kind == KIND_REFUND else 0,
            kind=kind,
            reason=reason or f"{kind} {amount} credits",
            job_id=reservation.job_id,
            settlement_key=reservation.job_id,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.get_settlement(reservation.job_id)
            if existing is None:
                raise
            return existing

        values = {
            "reserved_balance": Account.reserved_balance - amount,
            "updated_at": utcnow(),
        }
        if kind == KIND_REFUND:
            values["credit_balance"] = Account.credit_balance + amount
        result = self.db.execute(
            update(Account)
            .where(Account.account_id == reservation.account_id, Account.reserved_balance >= amount)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise LedgerInconsistencyError(
                f"account {reservation.account_id} holds less than {amount} reserved for job {reservation.job_id}"
            )
        self.db.commit()

        ledger_operations_total.labels(operation=kind).inc()
        logger.info(
            f"ledger_{kind}",
            extra={
                "account_id": reservation.account_id,
                "job_id": reservation.job_id,
                "amount": amount,
                "transaction_id": row.transaction_id,
            },
        )
        return row

    # ------------------------------------------------------------------
    # Top-ups (billing webhooks, admin tooling)
    # ------------------------------------------------------------------

    def top_up(
        self,
        account_id: str,
        amount: int,
        reason: str,
        external_ref: str | None = None,
    ) -> CreditTransaction:
        """Add purchased/granted credits. Idempotent on external_ref."""
        if amount <= 0:
            raise ValueError("top-up amount must be positive")
        if external_ref:
            existing = self._find_external(external_ref)
            if existing is not None:
                return existing

        self.ensure_account(account_id)
        self.db.execute(
            update(Account)
            .where(Account.account_id == account_id)
            .values(credit_balance=Account.credit_balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        row = CreditTransaction(
            account_id=account_id,
            amount=amount,
            kind=KIND_TOPUP,
            reason=reason,
            external_ref=external_ref,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self._find_external(external_ref) if external_ref else None
            if existing is None:
                raise
            return existing

        ledger_operations_total.labels(operation=KIND_TOPUP).inc()
        logger.info(
            "ledger_topup",
            extra={"account_id": account_id, "amount": amount, "transaction_id": row.transaction_id},
        )
        return row

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_reservation(self, job_id: str) -> Reservation | None:
        row = self._find(job_id, KIND_RESERVE)
        return Reservation.from_row(row) if row is not None else None

    def get_settlement(self, job_id: str) -> CreditTransaction | None:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.settlement_key == job_id)
            .one_or_none()
        )

    def open_reservations(self, older_than: datetime, limit: int = 200) -> list[Reservation]:
        """Reserve rows created before `older_than` with no commit or refund."""
        settled = select(CreditTransaction.settlement_key).where(
            CreditTransaction.settlement_key.isnot(None)
        )
        rows = (
            self.db.query(CreditTransaction)
            .filter(
                CreditTransaction.kind == KIND_RESERVE,
                CreditTransaction.created_at < older_than,
                CreditTransaction.job_id.not_in(settled),
            )
            .order_by(CreditTransaction.created_at)
            .limit(limit)
            .all()
        )
        return [Reservation.from_row(r) for r in rows]

    def list_transactions(self, account_id: str, limit: int = 100) -> list[CreditTransaction]:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
            .all()
        )

    def audit_account(self, account_id: str) -> AccountAudit | None:
        """Check that the transaction log explains the stored balances."""
        account = self.get_account(account_id)
        if account is None:
            return None
        transactions_sum = (
            self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
            .filter(CreditTransaction.account_id == account_id)
            .scalar()
        )
        settled = select(CreditTransaction.settlement_key).where(
            CreditTransaction.settlement_key.isnot(None)
        )
        open_reserved = (
            self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
            .filter(
                CreditTransaction.account_id == account_id,
                CreditTransaction.kind == KIND_RESERVE,
                CreditTransaction.job_id.not_in(settled),
            )
            .scalar()
        )
        return AccountAudit(
            account_id=account_id,
            credit_balance=account.credit_balance,
            reserved_balance=account.reserved_balance,
            transactions_sum=int(transactions_sum),
            open_reserved_sum=-int(open_reserved),
        )

    def _replayed(self, row: CreditTransaction, account_id: str, amount: int) -> Reservation:
        reservation = Reservation.from_row(row)
        if reservation.account_id != account_id or reservation.amount != amount:
            logger.warning(
                "ledger_reserve_conflict",
                extra={"account_id": account_id, "job_id": reservation.job_id, "amount": amount},
            )
            raise ReservationConflictError(
                f"job {reservation.job_id} already reserved {reservation.amount} "
                f"credits on account {reservation.account_id}"
            )
        return reservation

    def _find(self, job_id: str, kind: str) -> CreditTransaction | None:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.job_id == job_id, CreditTransaction.kind == kind)
            .one_or_none()
        )

    def _find_external(self, external_ref: str) -> CreditTransaction | None:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.external_ref == external_ref)
            .one_or_none()
        )
