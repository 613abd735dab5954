"""
Shared HTTP transport for provider adapters: failure classification and a
bounded retry budget with jitter, honouring Retry-After on 429.
"""
import logging
import random
import time
from enum import Enum
from typing import Any

import httpx

from creditjobs.services.providers.base import ProviderAdapter, ProviderError

logger = logging.getLogger(__name__)


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, timeout, connection reset
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429
    PROTOCOL = "protocol"  # 2xx with a body we cannot use


def classify_failure(http_status: int | None) -> tuple[FailureType, bool]:
    """Returns (failure_type, retry_allowed)."""
    if http_status is None:
        return (FailureType.TRANSPORT_TRANSIENT, True)
    if http_status == 429 or 500 <= http_status < 600:
        return (FailureType.TRANSPORT_TRANSIENT, True)
    if 400 <= http_status < 500:
        return (FailureType.CLIENT_NON_RETRIABLE, False)
    return (FailureType.PROTOCOL, False)


class HttpProviderAdapter(ProviderAdapter):
    """Adapter base owning one pooled httpx.Client."""

    def __init__(self, config: dict, transport: httpx.BaseTransport | None = None) -> None:
        super().__init__(config)
        self.timeout = config.get("timeout", 60.0)
        self.max_attempts = max(1, int(config.get("max_attempts", 3)))
        self.backoff_seconds = float(config.get("backoff_seconds", 1.0))
        self.respect_retry_after = bool(config.get("respect_retry_after", True))
        self._client = httpx.Client(timeout=self.timeout, transport=transport)

    def auth_headers(self) -> dict[str, str]:
        return {}

    def close(self) -> None:
        self._client.close()

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Send a request with the retry budget. Returns decoded JSON.
        Raises ProviderError with detail {http_status, failure_type, body} once
        the budget is spent or the failure is not retriable.
        """
        headers = {**self.auth_headers(), **kwargs.pop("headers", {})}
        attempt = 0
        while True:
            attempt += 1
            http_status = None
            retry_after = None
            try:
                response = self._client.request(method, url, headers=headers, **kwargs)
                http_status = response.status_code
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError:
                        raise ProviderError(
                            f"{self.name}: response is not JSON",
                            {"http_status": http_status, "failure_type": FailureType.PROTOCOL.value},
                        )
                retry_after = response.headers.get("Retry-After")
                message = f"{self.name}: HTTP {http_status}"
                body = response.text[:500]
            except httpx.HTTPError as e:
                message = f"{self.name}: {type(e).__name__}"
                body = str(e)[:500]

            failure_type, retry_allowed = classify_failure(http_status)
            detail = {
                "http_status": http_status,
                "failure_type": failure_type.value,
                "body": body,
                "retry_after": retry_after,
            }
            if not retry_allowed or attempt >= self.max_attempts:
                raise ProviderError(message, detail)

            delay = self.backoff_seconds
            if http_status == 429 and self.respect_retry_after and retry_after:
                try:
                    delay = float(retry_after)
                except (TypeError, ValueError):
                    pass
            delay += random.uniform(0, 1) * self.backoff_seconds
            logger.info(
                "provider_http_retry_scheduled",
                extra={
                    "provider": self.name,
                    "attempt": attempt,
                    "delay_seconds": round(delay, 2),
                    "error": failure_type.value,
                },
            )
            time.sleep(delay)
