import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from creditjobs.models.job import Job
from creditjobs.services.jobs.states import (
    TERMINAL_STATES,
    InvalidTransitionError,
    JobState,
    can_transition,
)
from creditjobs.services.providers.base import JobSpec
from creditjobs.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class JobService:
    """Persistence and state transitions for jobs. Every method commits."""

    def __init__(self, db: Session):
        self.db = db

    def build_job(
        self,
        job_id: str,
        account_id: str,
        cost: int,
        spec: JobSpec,
        poll_interval: float,
        max_wall_clock: float,
    ) -> Job:
        """New job in state `created`, not yet added to the session."""
        return Job(
            job_id=job_id,
            account_id=account_id,
            feature=spec.feature,
            provider=spec.provider,
            cost=cost,
            state=JobState.CREATED.value,
            spec=spec.to_dict(),
            poll_interval=poll_interval,
            max_wall_clock=max_wall_clock,
            detached=False,
            created_at=utcnow(),
        )

    def get(self, job_id: str) -> Job | None:
        return self.db.query(Job).filter(Job.job_id == job_id).one_or_none()

    def transition(self, job: Job, target: JobState, **fields) -> Job:
        current = JobState(job.state)
        if not can_transition(current, target):
            raise InvalidTransitionError(job.job_id, current.value, target.value)
        now = utcnow()
        job.state = target.value
        job.updated_at = now
        if target in TERMINAL_STATES:
            job.outcome = target.value
            job.terminal_at = now
        elif target == JobState.SETTLED:
            job.settled_at = now
        for key, value in fields.items():
            setattr(job, key, value)
        self.db.add(job)
        self.db.commit()
        logger.info(
            "job_state_changed",
            extra={
                "job_id": job.job_id,
                "old_state": current.value,
                "new_state": target.value,
            },
        )
        return job

    def mark_submitted(self, job: Job, provider_task_id: str) -> Job:
        now = utcnow()
        return self.transition(
            job,
            JobState.SUBMITTED,
            provider_task_id=provider_task_id,
            submitted_at=now,
            deadline_at=now + timedelta(seconds=job.max_wall_clock),
        )

    def mark_detached(self, job: Job) -> Job:
        job.detached = True
        job.updated_at = utcnow()
        self.db.add(job)
        self.db.commit()
        logger.info("job_detached", extra={"job_id": job.job_id, "state": job.state})
        return job

    def list_detached(self, limit: int = 200) -> list[Job]:
        return (
            self.db.query(Job)
            .filter(Job.state == JobState.POLLING.value, Job.detached.is_(True))
            .order_by(Job.deadline_at)
            .limit(limit)
            .all()
        )

    def deadline_passed(self, job: Job, now: datetime | None = None) -> bool:
        deadline = ensure_utc(job.deadline_at)
        return deadline is not None and (now or utcnow()) >= deadline
