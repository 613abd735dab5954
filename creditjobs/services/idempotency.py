import redis

from creditjobs.core.config import settings


class IdempotencyStore:
    """Guards POST /jobs against client retries carrying the same Idempotency-Key."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = settings.idempotency_ttl

    def claim(self, key: str, job_id: str, ttl_seconds: int | None = None) -> str | None:
        """
        Atomic SET NX EX. Returns None when the key is ours now, otherwise the
        job id recorded by the first request.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        created = self.client.set(f"idempotency:{key}", job_id, nx=True, ex=ttl)
        if created:
            return None
        return self.client.get(f"idempotency:{key}")

    def release(self, key: str, job_id: str) -> None:
        """Drop the claim, but only while it still belongs to `job_id`."""
        name = f"idempotency:{key}"
        if self.client.get(name) == job_id:
            self.client.delete(name)
