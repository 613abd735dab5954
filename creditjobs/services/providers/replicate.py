"""
Replicate predictions API adapter (Wan video, SDXL storyboard frames, ...).
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
    "starting": StatusKind.PENDING,
    "processing": StatusKind.RUNNING,
    "succeeded": StatusKind.SUCCEEDED,
    "failed": StatusKind.FAILED,
    "canceled": StatusKind.FAILED,
}


def first_output_url(output) -> str | None:
    if isinstance(output, str):
        return output or None
    if isinstance(output, list) and output:
        return first_output_url(output[0])
    if isinstance(output, dict):
        return output.get("url") or output.get("video") or output.get("image")
    return None


class ReplicateAdapter(HttpProviderAdapter):
    name = "replicate"

    def __init__(self, config: dict, transport: httpx.BaseTransport | None = None):
        super().__init__(config, transport=transport)
        self.api_token = config.get("api_token")
        self.api_url = (config.get("api_url") or "https://api.replicate.com/v1").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_token)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    def submit(self, spec: JobSpec) -> str:
        if not self.is_available():
            raise ProviderSubmissionError("replicate provider not configured")
        payload = dict(spec.payload)
        version = payload.pop("version", None)
        if version:
            url = f"{self.api_url}/predictions"
            body = {"version": version, "input": payload}
        elif spec.endpoint:
            # Official models: POST /models/{owner}/{name}/predictions
            url = f"{self.api_url}/models/{spec.endpoint.strip('/')}/predictions"
            body = {"input": payload}
        else:
            raise ProviderSubmissionError("replicate: job spec has no model or version")
        try:
            prediction = self.request_json("POST", url, json=body)
        except ProviderError as e:
            raise ProviderSubmissionError(str(e), e.detail) from e
        task_id = (prediction or {}).get("id")
        if not task_id:
            raise ProviderSubmissionError("replicate: no prediction id in response")
        return task_id

    def poll(self, task_id: str) -> ProviderStatus:
        try:
            prediction = self.request_json("GET", f"{self.api_url}/predictions/{task_id}")
        except ProviderError as e:
            logger.warning("provider_poll_unreachable", extra={"provider": self.name, "task_id": task_id, "error": str(e)})
            return ProviderStatus.failed("provider_unreachable")

        kind = normalize_status(prediction.get("status"), STATUS_VOCABULARY)
        if kind == StatusKind.SUCCEEDED:
            url = first_output_url(prediction.get("output"))
            if not url:
                return ProviderStatus.failed("no output")
            return ProviderStatus.succeeded(url)
        if kind == StatusKind.FAILED:
            return ProviderStatus.failed(prediction.get("error") or prediction.get("status") or "failed")
        return ProviderStatus(kind)
