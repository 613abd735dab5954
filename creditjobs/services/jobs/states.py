"""
Job lifecycle:

    created -> reserved -> submitted -> polling -> {succeeded, failed, timed_out} -> settled

A submit failure goes reserved -> failed. Nothing reaches settled without
passing through exactly one terminal state.
"""
from enum import Enum


class JobState(str, Enum):
    CREATED = "created"
    RESERVED = "reserved"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SETTLED = "settled"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT})

ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.CREATED: frozenset({JobState.RESERVED}),
    JobState.RESERVED: frozenset({JobState.SUBMITTED, JobState.FAILED}),
    JobState.SUBMITTED: frozenset({JobState.POLLING}),
    JobState.POLLING: frozenset(TERMINAL_STATES),
    JobState.SUCCEEDED: frozenset({JobState.SETTLED}),
    JobState.FAILED: frozenset({JobState.SETTLED}),
    JobState.TIMED_OUT: frozenset({JobState.SETTLED}),
    JobState.SETTLED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"job {job_id}: {current} -> {target} is not allowed")
        self.job_id = job_id
        self.current = current
        self.target = target


def can_transition(current: JobState | str, target: JobState | str) -> bool:
    return JobState(target) in ALLOWED_TRANSITIONS[JobState(current)]


def is_terminal(state: JobState | str) -> bool:
    return JobState(state) in TERMINAL_STATES
