"""
A2E video API adapter (face swap, talking photo/video, lipsync, dubbing, ...).
Responses are wrapped as {"code": 0, "data": {...}}; code != 0 is an error.
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
    "initialized": StatusKind.PENDING,
    "sent": StatusKind.PENDING,
    "pending": StatusKind.PENDING,
    "processing": StatusKind.RUNNING,
    "copy": StatusKind.RUNNING,
    "completed": StatusKind.SUCCEEDED,
    "done": StatusKind.SUCCEEDED,
    "success": StatusKind.SUCCEEDED,
    "failed": StatusKind.FAILED,
    "fail": StatusKind.FAILED,
    "error": StatusKind.FAILED,
}


class A2EAdapter(HttpProviderAdapter):
    name = "a2e"

    def __init__(self, config: dict, transport: httpx.BaseTransport | None = None):
        super().__init__(config, transport=transport)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://video.a2e.ai/api/v1").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def submit(self, spec: JobSpec) -> str:
        if not self.is_available():
            raise ProviderSubmissionError("a2e provider not configured")
        if not spec.endpoint:
            raise ProviderSubmissionError("a2e: job spec has no endpoint")
        try:
            data = self.request_json("POST", f"{self.api_url}/{spec.endpoint.strip('/')}", json=spec.payload)
        except ProviderError as e:
            raise ProviderSubmissionError(str(e), e.detail) from e
        if data.get("code") != 0:
            raise ProviderSubmissionError(f"a2e: {data.get('message') or 'unknown error'}", {"code": data.get("code")})
        task_id = (data.get("data") or {}).get("_id")
        if not task_id:
            raise ProviderSubmissionError("a2e: no task id in response")
        # Status route is the add route's resource: ".../userFaceSwapTask/add" -> ".../userFaceSwapTask/<id>"
        resource = spec.endpoint.strip("/").rsplit("/", 1)[0]
        return f"{resource}/{task_id}"

    def poll(self, task_id: str) -> ProviderStatus:
        try:
            data = self.request_json("GET", f"{self.api_url}/{task_id}")
        except ProviderError as e:
            logger.warning("provider_poll_unreachable", extra={"provider": self.name, "task_id": task_id, "error": str(e)})
            return ProviderStatus.failed("provider_unreachable")

        if data.get("code") != 0:
            # Wrapped error on a status call: keep polling, the deadline bounds it
            logger.info("a2e_status_error_code", extra={"task_id": task_id, "error": data.get("message")})
            return ProviderStatus.running()

        task = data.get("data") or {}
        kind = normalize_status(task.get("current_status"), STATUS_VOCABULARY)
        if kind == StatusKind.SUCCEEDED:
            url = task.get("result_url") or task.get("video_url")
            if not url:
                return ProviderStatus.failed("no output")
            return ProviderStatus.succeeded(url)
        if kind == StatusKind.FAILED:
            # "faild_message" is the provider's own spelling
            return ProviderStatus.failed(task.get("faild_message") or task.get("failed_message") or "failed")
        return ProviderStatus(kind)
