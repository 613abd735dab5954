"""
SettlementCoordinator: the single entry point for running a paid generation job.

    reserve -> submit -> poll -> commit | refund -> JobResult

For any execute() call the account ends up either debited exactly `cost`
(success) or unchanged (every failure), never anything in between. Errors
come back as values on JobResult.error.
"""
import logging
import time
from typing import Callable, Mapping
from uuid import uuid4

import pybreaker
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from creditjobs.core.config import settings as app_settings
from creditjobs.models.job import Job
from creditjobs.services.circuit_breaker import provider_breaker
from creditjobs.services.errors import (
    InsufficientFundsError,
    JobCancelledError,
    JobDetachedError,
    SubmissionFailedError,
)
from creditjobs.services.jobs.service import JobService
from creditjobs.services.jobs.states import TERMINAL_STATES, JobState
from creditjobs.services.ledger.service import CreditLedger, settlement_of
from creditjobs.services.polling.poller import (
    CancellationToken,
    JobPoller,
    PollCancelled,
    PollOutcome,
    PollPolicy,
)
from creditjobs.services.providers.base import JobSpec, ProviderAdapter, ProviderSubmissionError
from creditjobs.services.settlement.results import CANCELLED_REASON, JobResult, result_for_job
from creditjobs.services.settlement.settler import JobSettler
from creditjobs.utils.metrics import jobs_detached_total, jobs_submitted_total, submission_failures_total

logger = logging.getLogger(__name__)


class SettlementCoordinator:
    def __init__(
        self,
        session_factory: sessionmaker,
        adapters: Mapping[str, ProviderAdapter],
        settings=app_settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.adapters = adapters
        self.settings = settings
        self.clock = clock

    def execute(
        self,
        account_id: str,
        cost: int,
        spec: JobSpec,
        *,
        job_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> JobResult:
        """
        Run one job to settlement. `cost == 0` runs the same lifecycle without
        touching the ledger (free features, privileged accounts).
        Each call uses its own database session; nothing is held while polling.
        """
        if cost < 0:
            raise ValueError("cost must be >= 0")
        adapter = self.adapters.get(spec.provider)
        if adapter is None:
            raise ValueError(f"No adapter registered for provider {spec.provider}")

        db = self.session_factory()
        try:
            return self._execute(
                db,
                adapter,
                account_id,
                cost,
                spec,
                job_id or str(uuid4()),
                cancel_token or CancellationToken(),
            )
        finally:
            db.close()

    def _execute(
        self,
        db: Session,
        adapter: ProviderAdapter,
        account_id: str,
        cost: int,
        spec: JobSpec,
        job_id: str,
        token: CancellationToken,
    ) -> JobResult:
        jobs = JobService(db)
        ledger = CreditLedger(db)
        settler = JobSettler(db)

        existing = jobs.get(job_id)
        if existing is not None:
            # Redelivered task (worker crash, retry): never run a job twice.
            return self._resume_existing(db, existing)

        policy = PollPolicy.for_spec(spec, self.settings)
        job = jobs.build_job(job_id, account_id, cost, spec, policy.interval, policy.max_wall_clock)

        # 1. Reserve. The job row is committed together with the reserve row.
        try:
            if cost > 0:
                ledger.ensure_account(account_id)
                db.add(job)
                try:
                    ledger.reserve(account_id, cost, job_id, reason=f"{spec.feature or spec.provider} job")
                except InsufficientFundsError as e:
                    return JobResult(job_id=None, state=None, error=e)
            else:
                db.add(job)
            jobs.transition(job, JobState.RESERVED)
        except IntegrityError:
            # Another execution inserted the same job id first and owns it.
            db.rollback()
            existing = jobs.get(job_id)
            if existing is None:
                raise
            logger.info("job_already_running", extra={"job_id": job_id, "state": existing.state})
            return self._resume_existing(db, existing, take_over=False)

        if token.cancelled:
            settlement = settler.finish(job, JobState.FAILED, reason=CANCELLED_REASON)
            return JobResult(
                job_id,
                job.state,
                error=JobCancelledError("Cancelled before submission", job_id, settlement),
                settlement=settlement,
            )

        # 2. Submit. Failure goes straight to failed and a refund; no polling.
        task_id = None
        try:
            task_id = provider_breaker(spec.provider).call(adapter.submit, spec)
        except pybreaker.CircuitBreakerError:
            reason = "provider_unavailable"
        except ProviderSubmissionError as e:
            reason = str(e)
        except Exception as e:
            logger.exception("submit_unexpected_error", extra={"job_id": job_id, "provider": spec.provider})
            reason = f"{type(e).__name__}: {e}"
        if not task_id:
            submission_failures_total.labels(provider=spec.provider).inc()
            logger.warning(
                "job_submission_failed",
                extra={"job_id": job_id, "provider": spec.provider, "reason": reason},
            )
            settlement = settler.finish(job, JobState.FAILED, reason=reason)
            return JobResult(
                job_id,
                job.state,
                error=SubmissionFailedError(reason, job_id, settlement),
                settlement=settlement,
            )

        jobs.mark_submitted(job, task_id)
        jobs_submitted_total.labels(provider=spec.provider).inc()
        jobs.transition(job, JobState.POLLING)

        # 3. Poll until terminal or deadline.
        poller = JobPoller(adapter, policy, clock=self.clock)
        try:
            outcome = poller.wait_for_terminal(task_id, token)
        except PollCancelled:
            jobs.mark_detached(job)
            jobs_detached_total.inc()
            return JobResult(job_id, job.state, error=JobDetachedError(job_id))
        except Exception as e:
            logger.exception("poll_unexpected_error", extra={"job_id": job_id, "task_id": task_id})
            outcome = PollOutcome(JobState.FAILED, reason=f"internal_error: {type(e).__name__}")

        # 4. Settle: exactly one of commit / refund.
        settlement = settler.finish(job, outcome.state, result_ref=outcome.result_ref, reason=outcome.reason)
        return result_for_job(job, settlement)

    def _resume_existing(self, db: Session, job: Job, take_over: bool = True) -> JobResult:
        """
        Result for a job id that already has a row. A redelivered execution
        (`take_over`) hands a still-polling job to background reconciliation;
        a concurrent duplicate leaves it with the execution that owns it.
        """
        jobs = JobService(db)
        state = JobState(job.state)
        if state == JobState.SETTLED:
            row = CreditLedger(db).get_settlement(job.job_id)
            return result_for_job(job, settlement_of(row) if row is not None else None)
        if not take_over:
            return JobResult(job.job_id, job.state, error=JobDetachedError(job.job_id))
        if state in TERMINAL_STATES:
            settlement = JobSettler(db).settle(job)
            return result_for_job(job, settlement)
        if state == JobState.POLLING and not job.detached:
            jobs.mark_detached(job)
        return JobResult(job.job_id, job.state, error=JobDetachedError(job.job_id))
