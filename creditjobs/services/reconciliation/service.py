"""
Background reconciliation.

resume_detached: keep polling jobs whose caller went away and settle them.
sweep_orphans:   find reservations nobody resolved (crash mid-flight, lost
                 worker) and force them to a settlement.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping

from sqlalchemy.orm import Session

from creditjobs.core.config import settings as app_settings
from creditjobs.models.job import Job
from creditjobs.services.errors import OrphanedReservationError, Settlement
from creditjobs.services.jobs.service import JobService
from creditjobs.services.jobs.states import TERMINAL_STATES, JobState
from creditjobs.services.ledger.service import CreditLedger, Reservation, settlement_of
from creditjobs.services.polling.poller import outcome_from_status, poll_once
from creditjobs.services.providers.base import ProviderAdapter
from creditjobs.services.settlement.settler import JobSettler
from creditjobs.utils.clock import ensure_utc, utcnow
from creditjobs.utils.metrics import orphaned_reservations_total

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    settled: int = 0
    timed_out: int = 0
    still_running: int = 0
    orphans: list[OrphanedReservationError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "settled": self.settled,
            "timed_out": self.timed_out,
            "still_running": self.still_running,
            "orphans": [
                {"job_id": o.job_id, "account_id": o.account_id, "cause": o.cause}
                for o in self.orphans
            ],
        }


class ReconciliationService:
    def __init__(self, db: Session, adapters: Mapping[str, ProviderAdapter], settings=app_settings):
        self.db = db
        self.adapters = adapters
        self.settings = settings
        self.jobs = JobService(db)
        self.ledger = CreditLedger(db)
        self.settler = JobSettler(db)

    def resume_detached(self, now: datetime | None = None) -> SweepReport:
        """One status query per detached job; settle the ones that finished or ran out of time."""
        now = now or utcnow()
        report = SweepReport()
        for job in self.jobs.list_detached(limit=self.settings.reconciliation_batch_size):
            if self.jobs.deadline_passed(job, now):
                self.settler.finish(job, JobState.TIMED_OUT, reason="deadline exceeded")
                report.timed_out += 1
                continue

            adapter = self.adapters.get(job.provider)
            if adapter is None:
                logger.warning("reconcile_no_adapter", extra={"job_id": job.job_id, "provider": job.provider})
                report.still_running += 1
                continue

            status = poll_once(adapter, job.provider_task_id)
            outcome = outcome_from_status(status) if status is not None else None
            if outcome is None:
                report.still_running += 1
                continue
            self.settler.finish(job, outcome.state, result_ref=outcome.result_ref, reason=outcome.reason)
            report.settled += 1

        if report.settled or report.timed_out:
            logger.info(
                "reconcile_detached_done",
                extra={"count": report.settled + report.timed_out},
            )
        return report

    def sweep_orphans(self, now: datetime | None = None, grace_seconds: int | None = None) -> SweepReport:
        """Resolve reservations left open longer than the grace period."""
        now = now or utcnow()
        grace = timedelta(seconds=self.settings.orphan_grace_seconds if grace_seconds is None else grace_seconds)
        report = SweepReport()
        open_reservations = self.ledger.open_reservations(
            older_than=now - grace,
            limit=self.settings.reconciliation_batch_size,
        )
        for reservation in open_reservations:
            job = self.jobs.get(reservation.job_id)
            cause = self._orphan_cause(job, now, grace)
            if cause is None:
                report.still_running += 1
                continue
            settlement = self._force(reservation, job, cause)
            orphan = OrphanedReservationError(reservation.job_id, reservation.account_id, cause, settlement)
            report.orphans.append(orphan)
            orphaned_reservations_total.labels(cause=cause).inc()
            logger.warning(
                "orphaned_reservation_resolved",
                extra={
                    "job_id": reservation.job_id,
                    "account_id": reservation.account_id,
                    "amount": reservation.amount,
                    "reason": cause,
                    "kind": settlement.kind if settlement is not None else None,
                },
            )
        return report

    def _orphan_cause(self, job: Job | None, now: datetime, grace: timedelta) -> str | None:
        if job is None:
            return "job_missing"
        state = JobState(job.state)
        if state == JobState.SETTLED:
            return "settled_without_ledger"
        if state in TERMINAL_STATES:
            return "terminal_unsettled"
        if state == JobState.POLLING:
            deadline = ensure_utc(job.deadline_at)
            if deadline is None or deadline + grace <= now:
                return "detached_expired" if job.detached else "poll_abandoned"
            return None
        # created / reserved / submitted: the reservation is already older than grace
        return "stalled_before_polling"

    def _force(self, reservation: Reservation, job: Job | None, cause: str) -> Settlement | None:
        if job is None or job.state == JobState.SETTLED.value:
            row = self.ledger.refund(reservation, reason=f"orphaned reservation: {cause}")
            return settlement_of(row)

        state = JobState(job.state)
        if state in TERMINAL_STATES:
            return self.settler.settle(job)
        if state == JobState.SUBMITTED:
            self.jobs.transition(job, JobState.POLLING)
            state = JobState.POLLING
        if state == JobState.POLLING:
            return self.settler.finish(job, JobState.TIMED_OUT, reason=cause)
        if state == JobState.CREATED:
            self.jobs.transition(job, JobState.RESERVED)
        return self.settler.finish(job, JobState.FAILED, reason=cause)
