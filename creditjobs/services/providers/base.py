"""
Base classes and types for generation provider adapters.
Used by the factory and all adapters (replicate, a2e, atlascloud, fal).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class JobSpec:
    """Opaque provider request plus the polling parameters of its job class."""
    provider: str
    payload: dict[str, Any] = field(default_factory=dict)
    feature: str | None = None
    endpoint: str | None = None  # provider-specific route, e.g. "userFaceSwapTask/add"
    poll_interval: float | None = None
    max_wall_clock: float | None = None
    jitter: float = 0.0  # fraction of the interval, 0 = fixed interval

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "payload": self.payload,
            "feature": self.feature,
            "endpoint": self.endpoint,
            "poll_interval": self.poll_interval,
            "max_wall_clock": self.max_wall_clock,
            "jitter": self.jitter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobSpec":
        return cls(
            provider=data["provider"],
            payload=data.get("payload") or {},
            feature=data.get("feature"),
            endpoint=data.get("endpoint"),
            poll_interval=data.get("poll_interval"),
            max_wall_clock=data.get("max_wall_clock"),
            jitter=data.get("jitter") or 0.0,
        )


class StatusKind(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderStatus:
    """The only status shape that leaves an adapter."""
    kind: StatusKind
    result_ref: str | None = None
    reason: str | None = None

    @classmethod
    def pending(cls) -> "ProviderStatus":
        return cls(StatusKind.PENDING)

    @classmethod
    def running(cls) -> "ProviderStatus":
        return cls(StatusKind.RUNNING)

    @classmethod
    def succeeded(cls, result_ref: str) -> "ProviderStatus":
        return cls(StatusKind.SUCCEEDED, result_ref=result_ref)

    @classmethod
    def failed(cls, reason: str) -> "ProviderStatus":
        return cls(StatusKind.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (StatusKind.SUCCEEDED, StatusKind.FAILED)


class ProviderError(Exception):
    """Transport or protocol failure talking to a provider; detail holds http_status/retry_after."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class ProviderSubmissionError(ProviderError):
    """Provider did not accept the job."""


class ProviderAdapter(ABC):
    """One implementation per external provider."""

    name: str = ""

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """Check if adapter is configured (credentials present)."""
        pass

    @abstractmethod
    def submit(self, spec: JobSpec) -> str:
        """Start the job and return the provider task id. Must not wait for completion.
        Raises ProviderSubmissionError."""
        pass

    @abstractmethod
    def poll(self, task_id: str) -> ProviderStatus:
        """Report current status, normalized. Must not raise for transient transport errors."""
        pass

    def close(self) -> None:
        """Release pooled connections."""
        pass


def normalize_status(raw: str | None, vocabulary: dict[str, StatusKind]) -> StatusKind:
    """Map a provider status string; anything unknown keeps the job polling."""
    if raw is None:
        return StatusKind.RUNNING
    return vocabulary.get(str(raw).strip().lower(), StatusKind.RUNNING)
