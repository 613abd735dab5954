"""
JobPoller: drive a submitted provider task to a terminal outcome.

Sleeps are cancellable (CancellationToken.wait), intervals may grow by a
backoff factor up to a cap and carry jitter, and the whole wait is bounded
by max_wall_clock. Running out of time yields a locally decided timed_out.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from creditjobs.services.jobs.states import JobState
from creditjobs.services.providers.base import JobSpec, ProviderAdapter, ProviderStatus, StatusKind
from creditjobs.utils.metrics import active_polls

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set by the caller (client disconnect, worker shutdown) to stop waiting."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if cancelled meanwhile."""
        return self._event.wait(seconds)


class PollCancelled(Exception):
    def __init__(self, task_id: str, polls: int):
        super().__init__(f"polling of {task_id} cancelled after {polls} polls")
        self.task_id = task_id
        self.polls = polls


@dataclass(frozen=True)
class PollPolicy:
    interval: float
    max_wall_clock: float
    jitter: float = 0.0  # fraction of interval added at random
    backoff_factor: float = 1.0
    max_interval: float | None = None
    max_consecutive_errors: int = 5

    def next_interval(self, current: float) -> float:
        grown = current * self.backoff_factor
        if self.max_interval is not None:
            return min(grown, max(self.max_interval, self.interval))
        return grown

    @classmethod
    def for_spec(cls, spec: JobSpec, settings) -> "PollPolicy":
        return cls(
            interval=spec.poll_interval or settings.poll_interval_default,
            max_wall_clock=spec.max_wall_clock or settings.poll_max_wall_clock_default,
            jitter=spec.jitter or 0.0,
            backoff_factor=settings.poll_backoff_factor,
            max_interval=settings.poll_max_interval,
            max_consecutive_errors=settings.poll_max_consecutive_errors,
        )


@dataclass(frozen=True)
class PollOutcome:
    state: JobState  # succeeded | failed | timed_out
    result_ref: str | None = None
    reason: str | None = None
    polls: int = 0
    elapsed: float = 0.0


def poll_once(adapter: ProviderAdapter, task_id: str) -> ProviderStatus | None:
    """One status query. None when the adapter itself blew up."""
    try:
        return adapter.poll(task_id)
    except Exception as e:
        logger.warning(
            "poll_adapter_error",
            extra={"provider": adapter.name, "task_id": task_id, "error": f"{type(e).__name__}: {e}"},
        )
        return None


def outcome_from_status(status: ProviderStatus, polls: int = 0, elapsed: float = 0.0) -> PollOutcome | None:
    if status.kind == StatusKind.SUCCEEDED:
        return PollOutcome(JobState.SUCCEEDED, result_ref=status.result_ref, polls=polls, elapsed=elapsed)
    if status.kind == StatusKind.FAILED:
        return PollOutcome(JobState.FAILED, reason=status.reason or "failed", polls=polls, elapsed=elapsed)
    return None


class JobPoller:
    def __init__(
        self,
        adapter: ProviderAdapter,
        policy: PollPolicy,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.policy = policy
        self.clock = clock

    def _jittered(self, interval: float) -> float:
        if self.policy.jitter <= 0:
            return interval
        return interval + random.uniform(0, self.policy.jitter * interval)

    def wait_for_terminal(self, task_id: str, cancel_token: CancellationToken | None = None) -> PollOutcome:
        """
        Sleep, poll, inspect; repeat until the provider reports a terminal
        status or max_wall_clock has elapsed. Raises PollCancelled when the
        token fires during a sleep. Holds no database resources.
        """
        token = cancel_token or CancellationToken()
        policy = self.policy
        started = self.clock()
        interval = policy.interval
        polls = 0
        consecutive_errors = 0

        active_polls.inc()
        try:
            while True:
                elapsed = self.clock() - started
                remaining = policy.max_wall_clock - elapsed
                if remaining <= 0:
                    logger.info(
                        "poll_timed_out",
                        extra={"provider": self.adapter.name, "task_id": task_id, "elapsed_seconds": round(elapsed, 1)},
                    )
                    return PollOutcome(JobState.TIMED_OUT, reason="deadline exceeded", polls=polls, elapsed=elapsed)

                if token.wait(min(self._jittered(interval), remaining)):
                    raise PollCancelled(task_id, polls)

                status = poll_once(self.adapter, task_id)
                polls += 1
                elapsed = self.clock() - started
                if status is None:
                    consecutive_errors += 1
                    if consecutive_errors >= policy.max_consecutive_errors:
                        return PollOutcome(JobState.FAILED, reason="provider_unreachable", polls=polls, elapsed=elapsed)
                else:
                    consecutive_errors = 0
                    outcome = outcome_from_status(status, polls, elapsed)
                    if outcome is not None:
                        return outcome
                interval = policy.next_interval(interval)
        finally:
            active_polls.dec()
