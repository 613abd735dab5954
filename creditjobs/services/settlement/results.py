from dataclasses import dataclass

from creditjobs.models.job import Job
from creditjobs.services.errors import (
    JobCancelledError,
    JobDetachedError,
    JobTimeoutError,
    OrchestrationError,
    ProviderFailedError,
    Settlement,
    SubmissionFailedError,
)
from creditjobs.services.jobs.states import JobState

CANCELLED_REASON = "cancelled"


@dataclass
class JobResult:
    """What execute() hands back: a result reference or a typed error value."""
    job_id: str | None
    state: str | None
    result_ref: str | None = None
    error: OrchestrationError | None = None
    settlement: Settlement | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def result_for_job(job: Job, settlement: Settlement | None) -> JobResult:
    """Translate a job row (terminal, settled or still running) into a JobResult."""
    outcome = job.outcome
    if outcome is None:
        return JobResult(job.job_id, job.state, error=JobDetachedError(job.job_id))
    if outcome == JobState.SUCCEEDED.value:
        return JobResult(job.job_id, job.state, result_ref=job.result_ref, settlement=settlement)

    if outcome == JobState.TIMED_OUT.value:
        error: OrchestrationError = JobTimeoutError(job.max_wall_clock, job.job_id, settlement)
    elif job.failure_reason == CANCELLED_REASON and job.provider_task_id is None:
        error = JobCancelledError("Cancelled before submission", job.job_id, settlement)
    elif job.provider_task_id is None:
        error = SubmissionFailedError(job.failure_reason or "unknown", job.job_id, settlement)
    else:
        error = ProviderFailedError(job.failure_reason or "unknown", job.job_id, settlement)
    return JobResult(job.job_id, job.state, error=error, settlement=settlement)
