"""
Liveness and readiness probes.

/ready answers 503 while the ledger database or Redis (idempotency claims,
breaker state) is unreachable. Providers are listed for operators but never
fail readiness: an unconfigured provider only fails its own submissions.
"""
import logging
from typing import Mapping

import redis
from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from creditjobs.api.deps import get_adapters, get_idempotency_store
from creditjobs.db.session import get_db
from creditjobs.models.account import Account
from creditjobs.services.idempotency import IdempotencyStore
from creditjobs.services.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


def _check_ledger(db: Session) -> str:
    try:
        db.query(Account.account_id).limit(1).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("readiness_database_failed", extra={"error": str(e)})
        return f"error: {type(e).__name__}"
    return "ok"


def _check_redis(store: IdempotencyStore) -> str:
    try:
        store.client.ping()
    except redis.RedisError as e:
        logger.warning("readiness_redis_failed", extra={"error": str(e)})
        return f"error: {type(e).__name__}"
    return "ok"


@router.get("/ready")
def readiness(
    response: Response,
    db: Session = Depends(get_db),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
    adapters: Mapping[str, ProviderAdapter] = Depends(get_adapters),
) -> dict:
    checks = {"database": _check_ledger(db), "redis": _check_redis(idempotency)}
    ready = all(v == "ok" for v in checks.values())
    if not ready:
        response.status_code = 503
    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
        "providers": {name: adapter.is_available() for name, adapter in adapters.items()},
    }
