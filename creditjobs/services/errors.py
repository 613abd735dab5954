"""
Typed outcomes of SettlementCoordinator.execute.

Every error here is an Exception subclass so callers can raise it, but the
coordinator hands them back as values on JobResult.error.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Settlement:
    """Confirmation of the ledger call that resolved a reservation."""
    transaction_id: str
    kind: str  # commit | refund
    amount: int


class OrchestrationError(Exception):
    code = "orchestration_error"

    def __init__(self, message: str, job_id: str | None = None, settlement: Settlement | None = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.settlement = settlement

    @property
    def refunded(self) -> bool:
        return self.settlement is not None and self.settlement.kind == "refund"

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message, "job_id": self.job_id}
        if self.settlement is not None:
            data["refund_transaction_id"] = self.settlement.transaction_id
        return data


class InsufficientFundsError(OrchestrationError):
    """Reservation refused. No job, no transaction."""
    code = "insufficient_funds"

    def __init__(self, account_id: str, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Need {required} credits, have {available}.",
        )
        self.account_id = account_id
        self.required = required
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"required": self.required, "available": self.available})
        return data


class SubmissionFailedError(OrchestrationError):
    """Provider rejected the job at submit time. Always refunded."""
    code = "submission_failed"

    def __init__(self, reason: str, job_id: str | None = None, settlement: Settlement | None = None):
        super().__init__(f"Provider rejected the job: {reason}", job_id=job_id, settlement=settlement)
        self.reason = reason


class ProviderFailedError(OrchestrationError):
    """Provider accepted the job and later reported failure. Always refunded."""
    code = "provider_failed"

    def __init__(self, reason: str, job_id: str | None = None, settlement: Settlement | None = None):
        super().__init__(f"Generation failed: {reason}", job_id=job_id, settlement=settlement)
        self.reason = reason


class JobTimeoutError(OrchestrationError):
    """Local deadline passed without a terminal provider status. Always refunded."""
    code = "timeout"
    retryable = True

    def __init__(self, max_wall_clock: float, job_id: str | None = None, settlement: Settlement | None = None):
        super().__init__(
            f"Job did not finish within {max_wall_clock:g}s",
            job_id=job_id,
            settlement=settlement,
        )
        self.max_wall_clock = max_wall_clock

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = True
        return data


class JobCancelledError(OrchestrationError):
    """Cancelled before the provider saw the job. Refunded."""
    code = "cancelled"


class JobDetachedError(OrchestrationError):
    """
    Caller cancelled while the job was polling. The reservation stays open and
    the reconciliation worker keeps polling and settles the job.
    """
    code = "detached"

    def __init__(self, job_id: str):
        super().__init__("Job continues in background", job_id=job_id)


class OrphanedReservationError(OrchestrationError):
    """Operational: a reservation nobody resolved, found and forced by the sweep."""
    code = "orphaned_reservation"

    def __init__(self, job_id: str, account_id: str, cause: str, settlement: Settlement | None = None):
        super().__init__(f"Orphaned reservation resolved ({cause})", job_id=job_id, settlement=settlement)
        self.account_id = account_id
        self.cause = cause
