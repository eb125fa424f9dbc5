"""
Request pipeline tests.

Status handling, retry budget, backoff waits and dispatch pacing.
"""

import threading
import time

import pytest
import requests

from conftest import FakeClock, FakeResponse, response_sequence

from release_sync.exceptions import ProviderAuthError, ProviderUnavailableError
from release_sync.request_pipeline import PacingState, RequestPipeline, parse_retry_after
from release_sync.utils import run_id_var


@pytest.fixture
def pipeline(fake_clock, log_dir):
    pipe = RequestPipeline(
        max_concurrent=1,
        min_interval=0.25,
        max_retries=3,
        rate_limit_wait=10.0,
        server_error_wait=2.0,
        clock=fake_clock,
        log_dir=log_dir,
    )
    yield pipe
    pipe.shutdown()


class TestStatusHandling:
    """Per-attempt interpretation of provider responses."""

    def test_success_returns_json(self, pipeline):
        call = response_sequence(FakeResponse(200, {"id": 1}))
        assert pipeline.execute(call, provider="tmdb") == {"id": 1}
        assert len(call.calls) == 1

    def test_empty_body_is_empty_dict(self, pipeline):
        call = response_sequence(FakeResponse(204))
        assert pipeline.execute(call, provider="tmdb") == {}

    def test_not_found_is_no_data(self, pipeline):
        call = response_sequence(FakeResponse(404))
        assert pipeline.execute(call, provider="tvmaze") is None
        assert len(call.calls) == 1

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure_is_not_retried(self, pipeline, fake_clock, status):
        call = response_sequence(FakeResponse(status), FakeResponse(200, {"ok": True}))

        with pytest.raises(ProviderAuthError) as exc_info:
            pipeline.execute(call, provider="trakt")

        assert exc_info.value.status_code == status
        assert exc_info.value.provider == "trakt"
        assert len(call.calls) == 1
        assert fake_clock.waits == []


class TestRetries:
    """Rate limits and server errors share one bounded retry budget."""

    def test_rate_limit_honours_retry_after(self, pipeline, fake_clock):
        call = response_sequence(
            FakeResponse(429, headers={"Retry-After": "7"}),
            FakeResponse(200, {"page": 1}),
        )

        assert pipeline.execute(call, provider="tmdb") == {"page": 1}
        assert len(call.calls) == 2
        assert fake_clock.waits == [7.0]

    def test_rate_limit_without_header_uses_default_wait(self, pipeline, fake_clock):
        call = response_sequence(FakeResponse(429), FakeResponse(200, {"page": 1}))

        pipeline.execute(call, provider="tmdb")

        assert fake_clock.waits == [10.0]

    def test_server_errors_retried_with_fixed_wait(self, pipeline, fake_clock):
        call = response_sequence(FakeResponse(500), FakeResponse(502), FakeResponse(200, {"ok": True}))

        assert pipeline.execute(call, provider="tvmaze") == {"ok": True}
        assert len(call.calls) == 3
        assert fake_clock.waits == [2.0, 2.0]

    def test_timeouts_are_retried(self, pipeline):
        call = response_sequence(requests.exceptions.Timeout("slow"), FakeResponse(200, {"ok": True}))
        assert pipeline.execute(call, provider="tmdb") == {"ok": True}

    def test_exhausted_budget_raises_unavailable(self, pipeline, fake_clock):
        call = response_sequence(FakeResponse(503))

        with pytest.raises(ProviderUnavailableError) as exc_info:
            pipeline.execute(call, provider="tmdb", description="show 1")

        # One attempt plus three retries
        assert len(call.calls) == 4
        assert fake_clock.waits == [2.0, 2.0, 2.0]
        assert exc_info.value.status_code == 503

    def test_mixed_transient_errors_share_budget(self, pipeline):
        call = response_sequence(
            FakeResponse(429, headers={"Retry-After": "1"}),
            FakeResponse(500),
            FakeResponse(429, headers={"Retry-After": "1"}),
            FakeResponse(500),
            FakeResponse(200, {"never": "reached"}),
        )

        with pytest.raises(ProviderUnavailableError):
            pipeline.execute(call, provider="tmdb")
        assert len(call.calls) == 4

    def test_invalid_json_is_retried(self, pipeline):
        call = response_sequence(FakeResponse(200, content=b"<html>"), FakeResponse(200, {"ok": True}))
        assert pipeline.execute(call, provider="tvmaze") == {"ok": True}


class TestPacing:
    """Minimum spacing between dispatches, across all callers."""

    def test_consecutive_calls_are_spaced(self, pipeline, fake_clock):
        dispatched = []

        def call():
            dispatched.append(fake_clock.now())
            return FakeResponse(200, {})

        for _ in range(3):
            pipeline.execute(call, provider="tmdb")

        assert len(dispatched) == 3
        assert dispatched[1] - dispatched[0] >= 0.25
        assert dispatched[2] - dispatched[1] >= 0.25

    def test_concurrent_calls_are_spaced(self, log_dir):
        dispatched = []
        lock = threading.Lock()

        def call():
            with lock:
                dispatched.append(time.monotonic())
            return FakeResponse(200, {})

        with RequestPipeline(max_concurrent=4, min_interval=0.05, log_dir=log_dir) as pipe:
            futures = [pipe.submit(call, provider="tmdb") for _ in range(3)]
            for future in futures:
                future.result()

        dispatched.sort()
        assert dispatched[1] - dispatched[0] >= 0.04
        assert dispatched[2] - dispatched[1] >= 0.04

    def test_slot_reservation(self, fake_clock):
        pacing = PacingState(0.5, fake_clock)

        assert pacing.reserve_slot() == 0
        assert pacing.reserve_slot() == pytest.approx(0.5)
        assert pacing.reserve_slot() == pytest.approx(1.0)

        fake_clock.sleep(5)
        assert pacing.reserve_slot() == 0

    def test_in_flight_never_exceeds_limit(self, log_dir):
        observed = []
        pipe = RequestPipeline(max_concurrent=2, min_interval=0, log_dir=log_dir)

        def call():
            observed.append(pipe.pacing.in_flight)
            time.sleep(0.02)
            return FakeResponse(200, {})

        with pipe:
            futures = [pipe.submit(call, provider="tmdb") for _ in range(6)]
            for future in futures:
                future.result()

        assert max(observed) <= 2
        assert pipe.pacing.in_flight == 0


class TestRetryAfterParsing:

    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None

    def test_http_date_in_past(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


def test_run_id_reaches_worker_threads(pipeline):
    seen = []

    def call():
        seen.append(run_id_var.get())
        return FakeResponse(200, {})

    token = run_id_var.set("abc123")
    try:
        pipeline.execute(call, provider="tmdb")
    finally:
        run_id_var.reset(token)

    assert seen == ["abc123"]
