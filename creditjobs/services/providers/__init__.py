"""
Provider adapters: submit a job, report its normalized status.
"""
from .base import (
    JobSpec,
    ProviderAdapter,
    ProviderError,
    ProviderStatus,
    ProviderSubmissionError,
    StatusKind,
)
from .factory import ProviderAdapterFactory, default_registry

__all__ = [
    "JobSpec",
    "ProviderAdapter",
    "ProviderError",
    "ProviderStatus",
    "ProviderSubmissionError",
    "StatusKind",
    "ProviderAdapterFactory",
    "default_registry",
]
