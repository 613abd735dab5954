"""Tests for provider adapters: status normalization, task ids, transport retries."""
import json

import httpx
import pytest

from conftest import make_spec
from creditjobs.core.config import settings
from creditjobs.services.providers import ProviderAdapterFactory
from creditjobs.services.providers.a2e import A2EAdapter
from creditjobs.services.providers.atlascloud import AtlasCloudAdapter
from creditjobs.services.providers.base import ProviderSubmissionError, StatusKind
from creditjobs.services.providers.fal import FalAdapter, extract_artifact_url
from creditjobs.services.providers.replicate import ReplicateAdapter, first_output_url
from creditjobs.services.providers.transport import FailureType, classify_failure

FAST_RETRY = {"max_attempts": 3, "backoff_seconds": 0.0}


def _mock(routes: dict, calls: list | None = None) -> httpx.MockTransport:
    """routes: (METHOD, path) -> response or list of responses consumed in order."""

    def handler(request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        if calls is not None:
            calls.append((request.method, request.url.path, request.headers.get("Authorization")))
        entry = routes[key]
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    return httpx.MockTransport(handler)


class TestClassifyFailure:
    @pytest.mark.parametrize("status", [None, 429, 500, 503])
    def test_transient(self, status):
        assert classify_failure(status) == (FailureType.TRANSPORT_TRANSIENT, True)

    def test_client_error_not_retried(self):
        assert classify_failure(422) == (FailureType.CLIENT_NON_RETRIABLE, False)


class TestReplicateAdapter:
    def _adapter(self, routes, calls=None):
        config = {"api_token": "r8_test", "api_url": "https://api.replicate.test/v1", **FAST_RETRY}
        return ReplicateAdapter(config, transport=_mock(routes, calls))

    def test_submit_official_model(self):
        calls = []
        adapter = self._adapter(
            {("POST", "/v1/models/wan-video/wan-2.2-i2v-fast/predictions"): httpx.Response(201, json={"id": "p1"})},
            calls,
        )

        task_id = adapter.submit(make_spec(provider="replicate", endpoint="wan-video/wan-2.2-i2v-fast"))

        assert task_id == "p1"
        assert calls[0][2] == "Bearer r8_test"

    def test_poll_maps_vocabulary(self):
        adapter = self._adapter({
            ("GET", "/v1/predictions/p1"): [
                httpx.Response(200, json={"status": "starting"}),
                httpx.Response(200, json={"status": "processing"}),
                httpx.Response(200, json={"status": "succeeded", "output": ["https://r.test/out.mp4"]}),
            ]
        })

        kinds = [adapter.poll("p1") for _ in range(3)]

        assert [s.kind for s in kinds] == [StatusKind.PENDING, StatusKind.RUNNING, StatusKind.SUCCEEDED]
        assert kinds[-1].result_ref == "https://r.test/out.mp4"

    def test_canceled_prediction_is_failed(self):
        adapter = self._adapter(
            {("GET", "/v1/predictions/p1"): httpx.Response(200, json={"status": "canceled", "error": None})}
        )

        status = adapter.poll("p1")

        assert status.kind == StatusKind.FAILED
        assert status.reason == "canceled"

    def test_transient_errors_retried_within_budget(self):
        adapter = self._adapter({
            ("GET", "/v1/predictions/p1"): [
                httpx.Response(503),
                httpx.Response(429, headers={"Retry-After": "0"}),
                httpx.Response(200, json={"status": "processing"}),
            ]
        })

        assert adapter.poll("p1").kind == StatusKind.RUNNING

    def test_exhausted_budget_reports_unreachable(self):
        adapter = self._adapter({("GET", "/v1/predictions/p1"): [httpx.ConnectError("reset")]})

        status = adapter.poll("p1")

        assert status.kind == StatusKind.FAILED
        assert status.reason == "provider_unreachable"

    def test_client_error_on_submit_is_not_retried(self):
        calls = []
        adapter = self._adapter(
            {("POST", "/v1/predictions"): httpx.Response(422, json={"detail": "bad input"})},
            calls,
        )

        with pytest.raises(ProviderSubmissionError) as exc:
            adapter.submit(make_spec(provider="replicate", payload={"version": "abc", "prompt": "x"}))

        assert exc.value.detail["http_status"] == 422
        assert len(calls) == 1

    def test_unconfigured_adapter_refuses_submit(self):
        adapter = ReplicateAdapter({"api_token": ""})
        with pytest.raises(ProviderSubmissionError):
            adapter.submit(make_spec(provider="replicate", endpoint="owner/model"))

    def test_first_output_url_shapes(self):
        assert first_output_url("https://x/a.png") == "https://x/a.png"
        assert first_output_url([{"url": "https://x/b.png"}]) == "https://x/b.png"
        assert first_output_url([]) is None


class TestA2EAdapter:
    def _adapter(self, routes):
        config = {"api_key": "a2e_test", "api_url": "https://video.a2e.test/api/v1", **FAST_RETRY}
        return A2EAdapter(config, transport=_mock(routes))

    def test_task_id_routes_status_to_resource(self):
        adapter = self._adapter({
            ("POST", "/api/v1/userFaceSwapTask/add"): httpx.Response(200, json={"code": 0, "data": {"_id": "abc"}}),
            ("GET", "/api/v1/userFaceSwapTask/abc"): httpx.Response(
                200, json={"code": 0, "data": {"current_status": "completed", "result_url": "https://a2e.test/r.mp4"}}
            ),
        })

        task_id = adapter.submit(make_spec(provider="a2e", endpoint="userFaceSwapTask/add"))
        status = adapter.poll(task_id)

        assert task_id == "userFaceSwapTask/abc"
        assert status.kind == StatusKind.SUCCEEDED
        assert status.result_ref == "https://a2e.test/r.mp4"

    def test_wrapped_error_on_submit(self):
        adapter = self._adapter({
            ("POST", "/api/v1/talkingPhoto/start"): httpx.Response(200, json={"code": 1001, "message": "no credits"}),
        })

        with pytest.raises(ProviderSubmissionError) as exc:
            adapter.submit(make_spec(provider="a2e", endpoint="talkingPhoto/start"))
        assert "no credits" in str(exc.value)

    def test_failed_task_reason(self):
        adapter = self._adapter({
            ("GET", "/api/v1/userDubbing/t1"): httpx.Response(
                200, json={"code": 0, "data": {"current_status": "failed", "faild_message": "no face detected"}}
            ),
        })

        status = adapter.poll("userDubbing/t1")

        assert status.kind == StatusKind.FAILED
        assert status.reason == "no face detected"

    def test_unknown_status_keeps_polling(self):
        adapter = self._adapter({
            ("GET", "/api/v1/userDubbing/t1"): httpx.Response(200, json={"code": 0, "data": {"current_status": "rendering"}}),
        })

        assert adapter.poll("userDubbing/t1").kind == StatusKind.RUNNING


class TestAtlasCloudAdapter:
    def test_submit_and_poll(self):
        routes = {
            ("POST", "/api/v1/model/generateVideo"): httpx.Response(200, json={"data": {"id": "pred-1"}}),
            ("GET", "/api/v1/model/prediction/pred-1"): httpx.Response(
                200, json={"data": {"status": "completed", "outputs": ["https://atlas.test/v.mp4"]}}
            ),
        }
        adapter = AtlasCloudAdapter(
            {"api_key": "k", "api_url": "https://api.atlascloud.test/api/v1", **FAST_RETRY},
            transport=_mock(routes),
        )

        task_id = adapter.submit(make_spec(provider="atlascloud", endpoint="model/generateVideo"))
        status = adapter.poll(task_id)

        assert status.kind == StatusKind.SUCCEEDED
        assert status.result_ref == "https://atlas.test/v.mp4"


class TestFalAdapter:
    def test_completed_request_fetches_result(self):
        calls = []
        routes = {
            ("POST", "/fal-ai/wan/image-to-video"): httpx.Response(200, json={"request_id": "r1"}),
            ("GET", "/fal-ai/wan/image-to-video/requests/r1/status"): httpx.Response(
                200,
                json={"status": "COMPLETED", "response_url": "https://queue.fal.test/fal-ai/wan/image-to-video/requests/r1"},
            ),
            ("GET", "/fal-ai/wan/image-to-video/requests/r1"): httpx.Response(
                200, content=json.dumps({"video": {"url": "https://fal.test/v.mp4"}})
            ),
        }
        adapter = FalAdapter({"api_key": "fal_k", "queue_url": "https://queue.fal.test", **FAST_RETRY}, transport=_mock(routes, calls))

        task_id = adapter.submit(make_spec(provider="fal", endpoint="fal-ai/wan/image-to-video"))
        status = adapter.poll(task_id)

        assert task_id == "fal-ai/wan/image-to-video/requests/r1"
        assert status.result_ref == "https://fal.test/v.mp4"
        assert calls[0][2] == "Key fal_k"

    def test_in_queue_is_pending(self):
        routes = {("GET", "/m/requests/r1/status"): httpx.Response(200, json={"status": "IN_QUEUE"})}
        adapter = FalAdapter({"api_key": "k", "queue_url": "https://queue.fal.test", **FAST_RETRY}, transport=_mock(routes))

        assert adapter.poll("m/requests/r1").kind == StatusKind.PENDING

    def test_extract_artifact_url(self):
        assert extract_artifact_url({"images": [{"url": "https://fal.test/i.png"}]}) == "https://fal.test/i.png"
        assert extract_artifact_url({}) is None


class TestFactory:
    def test_registry_covers_all_providers(self):
        registry = ProviderAdapterFactory.registry_from_settings(settings)

        assert set(registry) == {"replicate", "a2e", "atlascloud", "fal"}
        assert all(adapter.name == name for name, adapter in registry.items())

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            ProviderAdapterFactory.create("midjourney", {})
