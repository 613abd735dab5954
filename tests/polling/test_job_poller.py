"""Tests for JobPoller: terminal detection, deadline, cancellation, transient errors."""
import httpx
import pytest

from conftest import ClockedToken, FakeAdapter, make_spec
from creditjobs.core.config import settings
from creditjobs.services.jobs.states import JobState
from creditjobs.services.polling.poller import JobPoller, PollCancelled, PollPolicy
from creditjobs.services.providers.base import ProviderStatus


def _poller(adapter, clock, **policy):
    params = {"interval": 2.0, "max_wall_clock": 30.0}
    params.update(policy)
    return JobPoller(adapter, PollPolicy(**params), clock=clock)


class TestWaitForTerminal:
    def test_succeeds_on_second_poll(self, clock):
        adapter = FakeAdapter([ProviderStatus.running(), ProviderStatus.succeeded("https://cdn.test/a.mp4")])
        token = ClockedToken(clock)

        outcome = _poller(adapter, clock).wait_for_terminal("task-1", token)

        assert outcome.state == JobState.SUCCEEDED
        assert outcome.result_ref == "https://cdn.test/a.mp4"
        assert outcome.polls == 2
        assert token.waits == [2.0, 2.0]

    def test_failure_carries_reason(self, clock):
        adapter = FakeAdapter([ProviderStatus.failed("nsfw_content")])

        outcome = _poller(adapter, clock).wait_for_terminal("task-1", ClockedToken(clock))

        assert outcome.state == JobState.FAILED
        assert outcome.reason == "nsfw_content"

    def test_pending_forever_times_out_at_deadline(self, clock):
        adapter = FakeAdapter([ProviderStatus.pending()])
        token = ClockedToken(clock)

        outcome = _poller(adapter, clock, max_wall_clock=30.0).wait_for_terminal("task-1", token)

        assert outcome.state == JobState.TIMED_OUT
        assert outcome.elapsed == pytest.approx(30.0)
        assert sum(token.waits) == pytest.approx(30.0)
        assert len(adapter.polled) == 15

    def test_last_sleep_is_clipped_to_remaining_budget(self, clock):
        adapter = FakeAdapter([ProviderStatus.running()])
        token = ClockedToken(clock)

        _poller(adapter, clock, interval=4.0, max_wall_clock=10.0).wait_for_terminal("task-1", token)

        assert token.waits == [4.0, 4.0, 2.0]

    def test_backoff_grows_interval_up_to_cap(self, clock):
        adapter = FakeAdapter([ProviderStatus.running()])
        token = ClockedToken(clock)

        _poller(
            adapter, clock, interval=2.0, max_wall_clock=40.0, backoff_factor=2.0, max_interval=8.0
        ).wait_for_terminal("task-1", token)

        assert token.waits[:5] == [2.0, 4.0, 8.0, 8.0, 8.0]

    def test_jitter_stays_within_fraction(self, clock):
        adapter = FakeAdapter([ProviderStatus.running(), ProviderStatus.running(), ProviderStatus.succeeded("x")])
        token = ClockedToken(clock)

        _poller(adapter, clock, interval=10.0, max_wall_clock=100.0, jitter=0.2).wait_for_terminal("task-1", token)

        assert all(10.0 <= w <= 12.0 for w in token.waits)

    def test_cancellation_during_sleep_raises(self, clock):
        adapter = FakeAdapter([ProviderStatus.running()])
        token = ClockedToken(clock, cancel_after_waits=3)

        with pytest.raises(PollCancelled) as exc:
            _poller(adapter, clock).wait_for_terminal("task-1", token)

        assert exc.value.polls == 2
        assert exc.value.task_id == "task-1"

    def test_transient_poll_errors_are_retried(self, clock):
        adapter = FakeAdapter([
            httpx.ConnectError("reset"),
            httpx.ReadTimeout("slow"),
            ProviderStatus.succeeded("https://cdn.test/b.png"),
        ])

        outcome = _poller(adapter, clock).wait_for_terminal("task-1", ClockedToken(clock))

        assert outcome.state == JobState.SUCCEEDED
        assert outcome.polls == 3

    def test_persistent_poll_errors_fail_the_job(self, clock):
        adapter = FakeAdapter([httpx.ConnectError("down")])

        outcome = _poller(adapter, clock, max_consecutive_errors=3).wait_for_terminal("task-1", ClockedToken(clock))

        assert outcome.state == JobState.FAILED
        assert outcome.reason == "provider_unreachable"
        assert outcome.polls == 3


class TestPollPolicy:
    def test_for_spec_uses_job_class_parameters(self):
        policy = PollPolicy.for_spec(make_spec(poll_interval=5.0, max_wall_clock=600.0, jitter=0.1), settings)

        assert policy.interval == 5.0
        assert policy.max_wall_clock == 600.0
        assert policy.jitter == 0.1

    def test_for_spec_falls_back_to_defaults(self):
        policy = PollPolicy.for_spec(make_spec(poll_interval=None, max_wall_clock=None), settings)

        assert policy.interval == settings.poll_interval_default
        assert policy.max_wall_clock == settings.poll_max_wall_clock_default
