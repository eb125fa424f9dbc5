"""
Rate-limited request pipeline.

Single point of egress to every external provider:
- Bounded worker pool (max simultaneous in-flight calls)
- Global pacing (minimum spacing between dispatches, across all callers)
- Retry of rate-limit and server errors within a fixed budget
- Typed terminal errors for auth failures and exhausted budgets
"""

import contextvars
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Any, Callable, Optional

import requests

from .config import Config
from .exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderServerError,
    ProviderUnavailableError,
)
from .utils import Clock, setup_logger


@dataclass
class PipelineTask:
    """A queued provider call with its retry count and completion handle."""

    call: Callable[[], requests.Response]
    provider: str
    description: str = ""
    attempts: int = 0
    future: Future = field(default_factory=Future)


class PacingState:
    """
    Shared dispatch state for the pipeline.

    Holds the last dispatch time and the in-flight counter behind one lock.
    Slots are reserved under the lock, so concurrent workers are spaced out
    even though they sleep outside of it.
    """

    def __init__(self, min_interval: float, clock: Clock):
        self.min_interval = min_interval
        self.clock = clock
        self._lock = Lock()
        self._last_dispatch: Optional[float] = None
        self._in_flight = 0

    def reserve_slot(self) -> float:
        """
        Reserve the next dispatch slot.

        Returns:
            Seconds the caller must wait before dispatching
        """
        with self._lock:
            now = self.clock.now()
            if self._last_dispatch is None:
                slot = now
            else:
                slot = max(now, self._last_dispatch + self.min_interval)
            self._last_dispatch = slot
            return slot - now

    def started(self) -> None:
        with self._lock:
            self._in_flight += 1

    def finished(self) -> None:
        with self._lock:
            self._in_flight -= 1

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header.

    Accepts delta-seconds or an HTTP-date. Returns None when absent or
    unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RequestPipeline:
    """
    Executes provider calls through a bounded, paced worker pool.

    Usage:
        pipeline = RequestPipeline.from_config(config)
        data = pipeline.execute(lambda: session.get(url), provider="tmdb")
    """

    def __init__(
        self,
        max_concurrent: int = 4,
        min_interval: float = 0.25,
        max_retries: int = 3,
        rate_limit_wait: float = 10.0,
        server_error_wait: float = 2.0,
        clock: Optional[Clock] = None,
        pacing: Optional[PacingState] = None,
        log_dir=None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.clock = clock or Clock()
        self.pacing = pacing or PacingState(min_interval, self.clock)
        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.rate_limit_wait = rate_limit_wait
        self.server_error_wait = server_error_wait
        self.logger = setup_logger("request_pipeline", log_dir)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent, thread_name_prefix="provider"
        )

    @classmethod
    def from_config(cls, config: Config, clock: Optional[Clock] = None) -> "RequestPipeline":
        return cls(
            max_concurrent=config.max_concurrent_requests,
            min_interval=config.min_request_interval,
            max_retries=config.max_retries,
            rate_limit_wait=config.rate_limit_wait,
            server_error_wait=config.server_error_wait,
            clock=clock,
            log_dir=config.log_dir,
        )

    def submit(
        self,
        call: Callable[[], requests.Response],
        provider: str,
        description: str = "",
    ) -> Future:
        """
        Queue a provider call.

        Args:
            call: Performs one HTTP attempt and returns the response
            provider: Provider name, used in errors and logs
            description: What is being fetched (for logs)

        Returns:
            Future resolving to the parsed JSON body, None for 404, or the
            terminal ProviderError
        """
        task = PipelineTask(call=call, provider=provider, description=description)
        # Carry the caller's run id into the worker thread
        ctx = contextvars.copy_context()
        self._executor.submit(ctx.run, self._run, task)
        return task.future

    def execute(
        self,
        call: Callable[[], requests.Response],
        provider: str,
        description: str = "",
    ) -> Any:
        """Submit a call and block until it completes."""
        return self.submit(call, provider, description).result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "RequestPipeline":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()

    def _run(self, task: PipelineTask) -> None:
        if not task.future.set_running_or_notify_cancel():
            return
        try:
            result = self._run_with_retries(task)
        except Exception as e:
            task.future.set_exception(e)
        else:
            task.future.set_result(result)

    def _run_with_retries(self, task: PipelineTask) -> Any:
        while True:
            try:
                return self._attempt(task)
            except (ProviderRateLimitedError, ProviderServerError) as e:
                if task.attempts > self.max_retries:
                    self.logger.error(
                        f"Max retries ({self.max_retries}) exceeded for "
                        f"{task.provider} {task.description}: {e}"
                    )
                    raise ProviderUnavailableError(
                        task.provider,
                        f"retry budget exhausted for {task.description or 'request'}",
                        status_code=e.status_code,
                    ) from e

                wait_time = self._backoff(e)
                self.logger.warning(
                    f"{e}; waiting {wait_time:.1f}s "
                    f"(retry {task.attempts}/{self.max_retries}) {task.description}"
                )
                self.clock.sleep(wait_time)

    def _backoff(self, error: ProviderError) -> float:
        if isinstance(error, ProviderRateLimitedError):
            if error.retry_after is not None:
                return error.retry_after
            return self.rate_limit_wait
        return self.server_error_wait

    def _attempt(self, task: PipelineTask) -> Any:
        self.clock.sleep(self.pacing.reserve_slot())
        task.attempts += 1

        self.pacing.started()
        try:
            response = task.call()
        except requests.exceptions.Timeout as e:
            raise ProviderServerError(task.provider, f"timeout: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderServerError(task.provider, f"connection error: {e}") from e
        finally:
            self.pacing.finished()

        return self._interpret(task, response)

    def _interpret(self, task: PipelineTask, response: requests.Response) -> Any:
        status = response.status_code

        if 200 <= status < 300:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise ProviderServerError(task.provider, "invalid JSON body", status) from e

        # Not found - no data, don't retry
        if status == 404:
            return None

        if status in (401, 403):
            self.logger.error(f"{task.provider} rejected credentials ({status}) {task.description}")
            raise ProviderAuthError(task.provider, "credentials rejected", status_code=status)

        if status == 429:
            raise ProviderRateLimitedError(
                task.provider, retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )

        raise ProviderServerError(task.provider, f"unexpected status {status}", status_code=status)
