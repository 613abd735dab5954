"""
FastAPI dependencies shared by the routers. Tests swap them out through
app.dependency_overrides.
"""
import anyio
from fastapi import Header, HTTPException

from creditjobs.core.config import settings
from creditjobs.db.session import SessionLocal
from creditjobs.services.idempotency import IdempotencyStore
from creditjobs.services.providers import default_registry
from creditjobs.services.settlement import SettlementCoordinator


def get_adapters() -> dict:
    return default_registry()


def get_coordinator() -> SettlementCoordinator:
    return SettlementCoordinator(SessionLocal, get_adapters(), settings)


_idempotency_store: IdempotencyStore | None = None


def get_idempotency_store() -> IdempotencyStore:
    global _idempotency_store
    if _idempotency_store is None:
        _idempotency_store = IdempotencyStore()
    return _idempotency_store


_wait_limiter: anyio.CapacityLimiter | None = None


async def get_wait_limiter() -> anyio.CapacityLimiter:
    """
    Threads for wait=true executions. They poll for minutes, so they get
    their own limiter instead of anyio's default one, which every sync
    endpoint shares.
    """
    global _wait_limiter
    if _wait_limiter is None:
        _wait_limiter = anyio.CapacityLimiter(settings.gateway_max_waiting_jobs)
    return _wait_limiter


def require_admin(x_admin_key: str | None = Header(None, alias="X-Admin-Key")) -> None:
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(403, "Admin key required")
