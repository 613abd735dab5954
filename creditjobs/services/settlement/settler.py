import logging

from sqlalchemy.orm import Session

from creditjobs.models.job import Job
from creditjobs.services.errors import Settlement
from creditjobs.services.jobs.service import JobService
from creditjobs.services.jobs.states import TERMINAL_STATES, JobState
from creditjobs.services.ledger.service import CreditLedger, LedgerInconsistencyError, settlement_of
from creditjobs.utils.clock import ensure_utc, utcnow
from creditjobs.utils.metrics import job_duration_seconds, jobs_settled_total

logger = logging.getLogger(__name__)


class JobSettler:
    """
    Terminal state -> exactly one ledger call -> settled.
    succeeded commits the reservation; failed and timed_out refund it.
    Shared by the coordinator and the reconciliation sweeps.
    """

    def __init__(self, db: Session):
        self.db = db
        self.jobs = JobService(db)
        self.ledger = CreditLedger(db)

    def finish(
        self,
        job: Job,
        terminal: JobState,
        result_ref: str | None = None,
        reason: str | None = None,
    ) -> Settlement | None:
        if terminal not in TERMINAL_STATES:
            raise ValueError(f"{terminal} is not a terminal state")
        if JobState(job.state) not in TERMINAL_STATES and job.state != JobState.SETTLED.value:
            fields = {"result_ref": result_ref} if terminal == JobState.SUCCEEDED else {"failure_reason": reason}
            self.jobs.transition(job, terminal, **fields)
        return self.settle(job)

    def settle(self, job: Job) -> Settlement | None:
        if job.state == JobState.SETTLED.value:
            row = self.ledger.get_settlement(job.job_id)
            return settlement_of(row) if row is not None else None

        state = JobState(job.state)
        if state not in TERMINAL_STATES:
            raise ValueError(f"job {job.job_id} is {state.value}, not terminal")

        row = None
        if job.cost > 0:
            reservation = self.ledger.get_reservation(job.job_id)
            if reservation is None:
                raise LedgerInconsistencyError(f"job {job.job_id} has no reservation")
            if state == JobState.SUCCEEDED:
                row = self.ledger.commit(reservation, reason=f"{job.feature or job.provider} succeeded")
            else:
                row = self.ledger.refund(reservation, reason=f"{job.feature or job.provider} {state.value}")

        self.jobs.transition(
            job,
            JobState.SETTLED,
            settlement_transaction_id=row.transaction_id if row is not None else None,
        )
        jobs_settled_total.labels(provider=job.provider, outcome=state.value).inc()
        created_at = ensure_utc(job.created_at)
        if created_at is not None:
            job_duration_seconds.labels(provider=job.provider).observe((utcnow() - created_at).total_seconds())
        logger.info(
            "job_settled",
            extra={
                "job_id": job.job_id,
                "account_id": job.account_id,
                "outcome": state.value,
                "amount": job.cost,
                "kind": row.kind if row is not None else None,
                "transaction_id": row.transaction_id if row is not None else None,
            },
        )
        return settlement_of(row) if row is not None else None
