"""
Celery task: run one job through reserve -> submit -> poll -> settle.

Used by POST /jobs?wait=false. A worker shutdown cancels in-flight
executions so polling jobs are detached and picked up by reconciliation.
The worker runs a thread pool by default, where `worker_shutting_down`
fires in the process executing the tasks. Prefork children never see that
signal, so each child cancels on its own SIGTERM instead.
"""
import logging
import signal

from celery.signals import worker_process_init, worker_shutting_down

from creditjobs.core.celery_app import celery_app
from creditjobs.core.config import settings
from creditjobs.db.session import SessionLocal
from creditjobs.services.errors import InsufficientFundsError
from creditjobs.services.idempotency import IdempotencyStore
from creditjobs.services.polling.poller import CancellationToken
from creditjobs.services.providers import default_registry
from creditjobs.services.providers.base import JobSpec
from creditjobs.services.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

shutdown_token = CancellationToken()


@worker_shutting_down.connect
def _cancel_in_flight(sig=None, how=None, exitcode=None, **kwargs) -> None:
    logger.warning("worker_shutting_down", extra={"reason": how})
    shutdown_token.cancel()


@worker_process_init.connect
def _install_child_sigterm_handler(**kwargs) -> None:
    def _on_sigterm(signum, frame):
        logger.warning("worker_child_terminating", extra={"reason": "SIGTERM"})
        shutdown_token.cancel()

    signal.signal(signal.SIGTERM, _on_sigterm)


@celery_app.task(
    bind=True,
    name="creditjobs.workers.tasks.execute_job.execute_job",
    time_limit=1800,
    soft_time_limit=1790,
)
def execute_job(
    self,
    job_id: str,
    account_id: str,
    cost: int,
    spec: dict,
    idempotency_key: str | None = None,
) -> dict:
    """Execute a job enqueued by the gateway. Redelivery resumes the same job."""
    coordinator = SettlementCoordinator(SessionLocal, default_registry(), settings)
    result = coordinator.execute(
        account_id,
        cost,
        JobSpec.from_dict(spec),
        job_id=job_id,
        cancel_token=shutdown_token,
    )
    if idempotency_key and isinstance(result.error, InsufficientFundsError):
        # Nothing was created, so a retry after a top-up must not hit 409.
        IdempotencyStore().release(idempotency_key, job_id)
    if result.error is not None:
        logger.info(
            "execute_job_finished_with_error",
            extra={"job_id": job_id, "task_id": self.request.id, "outcome": result.error.code},
        )
        return {"ok": False, "job_id": result.job_id, "state": result.state, "error": result.error.to_dict()}
    return {"ok": True, "job_id": result.job_id, "state": result.state, "result_ref": result.result_ref}
