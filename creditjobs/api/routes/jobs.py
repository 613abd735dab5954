import asyncio
import logging
from functools import partial
from uuid import uuid4

import anyio.to_thread
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from creditjobs.api.deps import get_coordinator, get_idempotency_store, get_wait_limiter
from creditjobs.core.config import settings
from creditjobs.db.session import get_db
from creditjobs.schemas.jobs import JobCreate, JobOut, JobResultOut, SettlementOut
from creditjobs.services.catalog import UnknownFeatureError, get_feature, price_for
from creditjobs.services.errors import (
    InsufficientFundsError,
    JobCancelledError,
    JobDetachedError,
    JobTimeoutError,
    ProviderFailedError,
    SubmissionFailedError,
)
from creditjobs.services.idempotency import IdempotencyStore
from creditjobs.services.jobs.service import JobService
from creditjobs.services.polling.poller import CancellationToken
from creditjobs.services.settlement import JobResult, SettlementCoordinator
from creditjobs.workers.tasks.execute_job import execute_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

DISCONNECT_CHECK_SECONDS = 0.5

ERROR_STATUS = {
    InsufficientFundsError: 402,
    SubmissionFailedError: 502,
    ProviderFailedError: 502,
    JobTimeoutError: 408,
    JobDetachedError: 202,
    JobCancelledError: 409,
}


def _result_response(result: JobResult) -> JSONResponse:
    body = JobResultOut(
        job_id=result.job_id,
        state=result.state,
        result_ref=result.result_ref,
        error=result.error.to_dict() if result.error is not None else None,
        settlement=SettlementOut(**vars(result.settlement)) if result.settlement is not None else None,
    )
    status_code = 200 if result.error is None else ERROR_STATUS.get(type(result.error), 500)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def _cancel_on_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("client_disconnected", extra={"request_id": request.headers.get(settings.request_id_header)})
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_CHECK_SECONDS)


@router.post("")
async def create_job(
    body: JobCreate,
    request: Request,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    coordinator: SettlementCoordinator = Depends(get_coordinator),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
    wait_limiter: anyio.CapacityLimiter = Depends(get_wait_limiter),
) -> JSONResponse:
    try:
        feature = get_feature(body.feature)
    except UnknownFeatureError:
        raise HTTPException(400, f"Unknown feature: {body.feature}")

    cost = price_for(feature, body.account_id, settings.privileged_account_ids_set)
    spec = feature.build_spec(body.payload)
    job_id = str(uuid4())

    if idempotency_key:
        first_job_id = idempotency.claim(idempotency_key, job_id)
        if first_job_id is not None:
            raise HTTPException(409, {"code": "duplicate_request", "job_id": first_job_id})

    enqueue = not body.wait
    if body.wait and wait_limiter.available_tokens < 1:
        # Every wait slot is polling; answer like wait=false instead of queueing the request.
        logger.warning("wait_capacity_exhausted", extra={"job_id": job_id, "count": wait_limiter.borrowed_tokens})
        enqueue = True
    if enqueue:
        execute_job.delay(job_id, body.account_id, cost, spec.to_dict(), idempotency_key=idempotency_key)
        logger.info("job_enqueued", extra={"job_id": job_id, "account_id": body.account_id, "feature": feature.name})
        return JSONResponse(status_code=202, content={"job_id": job_id, "state": "queued"})

    token = CancellationToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        result = await anyio.to_thread.run_sync(
            partial(coordinator.execute, body.account_id, cost, spec, job_id=job_id, cancel_token=token),
            limiter=wait_limiter,
        )
    finally:
        watcher.cancel()
    if idempotency_key and isinstance(result.error, InsufficientFundsError):
        # No job was created; a retry after a top-up must be accepted.
        idempotency.release(idempotency_key, job_id)
    return _result_response(result)


@router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: str, db: Session = Depends(get_db)) -> JobOut:
    job = JobService(db).get(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return JobOut(
        job_id=job.job_id,
        account_id=job.account_id,
        feature=job.feature,
        provider=job.provider,
        state=job.state,
        outcome=job.outcome,
        cost=job.cost,
        detached=bool(job.detached),
        result_ref=job.result_ref,
        failure_reason=job.failure_reason,
        created_at=job.created_at,
        settled_at=job.settled_at,
    )
