"""
AtlasCloud model API adapter (Wan 2.6 text/image/video-to-video, video extend).
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
    "created": StatusKind.PENDING,
    "queued": StatusKind.PENDING,
    "starting": StatusKind.PENDING,
    "processing": StatusKind.RUNNING,
    "running": StatusKind.RUNNING,
    "completed": StatusKind.SUCCEEDED,
    "succeeded": StatusKind.SUCCEEDED,
    "failed": StatusKind.FAILED,
    "error": StatusKind.FAILED,
}


class AtlasCloudAdapter(HttpProviderAdapter):
    name = "atlascloud"

    def __init__(self, config: dict, transport: httpx.BaseTransport | None = None):
        super().__init__(config, transport=transport)
        self.api_key = config.get("api_key")
        self.api_url = (config.get("api_url") or "https://api.atlascloud.ai/api/v1").rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def submit(self, spec: JobSpec) -> str:
        if not self.is_available():
            raise ProviderSubmissionError("atlascloud provider not configured")
        endpoint = (spec.endpoint or "model/generateVideo").strip("/")
        try:
            result = self.request_json("POST", f"{self.api_url}/{endpoint}", json=spec.payload)
        except ProviderError as e:
            raise ProviderSubmissionError(str(e), e.detail) from e
        task_id = (result.get("data") or {}).get("id")
        if not task_id:
            raise ProviderSubmissionError(f"atlascloud: {result.get('message') or 'no prediction id'}")
        return task_id

    def poll(self, task_id: str) -> ProviderStatus:
        try:
            result = self.request_json("GET", f"{self.api_url}/model/prediction/{task_id}")
        except ProviderError as e:
            logger.warning("provider_poll_unreachable", extra={"provider": self.name, "task_id": task_id, "error": str(e)})
            return ProviderStatus.failed("provider_unreachable")

        data = result.get("data") or {}
        kind = normalize_status(data.get("status"), STATUS_VOCABULARY)
        if kind == StatusKind.SUCCEEDED:
            outputs = data.get("outputs") or []
            if not outputs:
                return ProviderStatus.failed("no output")
            return ProviderStatus.succeeded(outputs[0])
        if kind == StatusKind.FAILED:
            return ProviderStatus.failed(data.get("error") or "failed")
        return ProviderStatus(kind)
