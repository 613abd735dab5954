"""
fal.ai queue adapter. Completed requests expose the result at response_url,
which needs one more call to get the artifact URL.
"""
import logging

import httpx

from creditjobs.services.providers.base import (
    JobSpec,
    ProviderError,
    ProviderStatus,
    ProviderSubmissionError,
    StatusKind,
    normalize_status,
)
from creditjobs.services.providers.transport import HttpProviderAdapter

logger = logging.getLogger(__name__)

STATUS_VOCABULARY = {
    "in_queue": StatusKind.PENDING,
    "in_progress": StatusKind.RUNNING,
    "completed": StatusKind.SUCCEEDED,
    "failed": StatusKind.FAILED,
    "error": StatusKind.FAILED,
}


def extract_artifact_url(result: dict) -> str | None:
    for key in ("video", "image", "audio"):
        value = result.get(key)
        if isinstance(value, dict) and value.get("url"):
            return value["url"]
    for key in ("images", "videos"):
        items = result.get(key) or []
        if items and isinstance(items[0], dict) and items[0].get("url"):
            return items[0]["url"]
    return result.get("url")


class FalAdapter(HttpProviderAdapter):
    name = "fal"

    def __init__(self, config: dict, transport: httpx.BaseTransport | None = None):
        super().__init__(config, transport=transport)
        self.api_key = config.get("api_key")
        self.queue_url = (config.get("queue_url") or "https://queue.fal.run").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.api_key}"}

    def submit(self, spec: JobSpec) -> str:
        if not self.is_available():
            raise ProviderSubmissionError("fal provider not configured")
        if not spec.endpoint:
            raise ProviderSubmissionError("fal: job spec has no model endpoint")
        model = spec.endpoint.strip("/")
        try:
            data = self.request_json("POST", f"{self.queue_url}/{model}", json=spec.payload)
        except ProviderError as e:
            raise ProviderSubmissionError(str(e), e.detail) from e
        request_id = data.get("request_id")
        if not request_id:
            raise ProviderSubmissionError("fal: no request_id in response")
        return f"{model}/requests/{request_id}"

    def poll(self, task_id: str) -> ProviderStatus:
        try:
            status = self.request_json("GET", f"{self.queue_url}/{task_id}/status")
        except ProviderError as e:
            logger.warning("provider_poll_unreachable", extra={"provider": self.name, "task_id": task_id, "error": str(e)})
            return ProviderStatus.failed("provider_unreachable")

        kind = normalize_status(status.get("status"), STATUS_VOCABULARY)
        if kind == StatusKind.FAILED:
            return ProviderStatus.failed(status.get("error") or "failed")
        if kind != StatusKind.SUCCEEDED:
            return ProviderStatus(kind)

        if status.get("error"):
            return ProviderStatus.failed(status["error"])
        response_url = status.get("response_url") or f"{self.queue_url}/{task_id}"
        try:
            result = self.request_json("GET", response_url)
        except ProviderError as e:
            logger.warning("provider_result_unreachable", extra={"provider": self.name, "task_id": task_id, "error": str(e)})
            return ProviderStatus.failed("provider_unreachable")
        url = extract_artifact_url(result or {})
        if not url:
            return ProviderStatus.failed("no output")
        return ProviderStatus.succeeded(url)
