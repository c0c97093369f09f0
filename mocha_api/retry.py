"""Retry Policy - Decides whether a failed attempt is repeated, and when.

States:
    ATTEMPTING -> SUCCEEDED  the attempt produced an accepted response
    ATTEMPTING -> WAITING    transient failure, retry enabled, attempts left
    WAITING    -> ATTEMPTING after backoff_delay(n) for the n-th attempt
    ATTEMPTING -> EXHAUSTED  transient failure on the last allowed attempt
    ATTEMPTING -> ABORTED    non-transient failure, or retry disabled

Only transport-level transience (timeouts, refused connections) and
interceptors that raise a transient InterceptorError are retryable. Status
codes are not retried unless an interceptor such as RetryOnStatusInterceptor
asks for it.

RetryPolicy.retrying() builds the tenacity controller that drives the loop;
RetryStatus records what each attempt did so the engine can report it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mocha_api.errors import is_transient
from mocha_api.models import MAX_ATTEMPTS

if TYPE_CHECKING:
    from mocha_api.models import ClientConfig
    from mocha_api.response import ApiResponse


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({RetryState.SUCCEEDED, RetryState.EXHAUSTED, RetryState.ABORTED})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter, bounded to MAX_ATTEMPTS."""

    enabled: bool = False
    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if not 1 <= self.max_attempts <= MAX_ATTEMPTS:
            raise ValueError(f"max_attempts must be between 1 and {MAX_ATTEMPTS}")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    @classmethod
    def from_config(cls, config: ClientConfig) -> RetryPolicy:
        return cls(
            enabled=config.retry_enabled,
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th (1-indexed) attempt fails."""
        if attempt < 1:
            raise ValueError("attempt is 1-indexed")
        return self.base_delay * 2 ** (attempt - 1)

    def should_retry(self, error: BaseException) -> bool:
        return self.enabled and is_transient(error)

    def retrying(
        self,
        sleep: Callable[[float], None],
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> Retrying:
        """Build a tenacity controller for one execution.

        Calling it re-raises a non-retryable failure unchanged; when the last
        allowed attempt fails transiently it raises tenacity.RetryError.
        """
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay),
            retry=retry_if_exception(self.should_retry),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

    def next_state(self, attempt: int, error: BaseException | None) -> RetryState:
        """Classify the outcome of the ``attempt``-th (1-indexed) attempt."""
        if error is None:
            return RetryState.SUCCEEDED
        if not self.should_retry(error):
            return RetryState.ABORTED
        if attempt >= self.max_attempts:
            return RetryState.EXHAUSTED
        return RetryState.WAITING


@dataclass
class RetryStatus:
    """Mutable bookkeeping for one execution's retry loop.

    Never shared between executions; discarded when the loop terminates.
    """

    policy: RetryPolicy
    attempt: int = 0
    state: RetryState = RetryState.ATTEMPTING
    last_error: BaseException | None = None
    last_response: ApiResponse | None = None
    delays: list[float] = field(default_factory=list)

    @property
    def waited(self) -> float:
        """Cumulative backoff time in seconds."""
        return sum(self.delays)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def begin_attempt(self) -> int:
        """Move to ATTEMPTING and return the new 1-indexed attempt number."""
        if self.finished:
            raise RuntimeError(f"retry loop already {self.state.value}")
        self.state = RetryState.ATTEMPTING
        self.attempt += 1
        return self.attempt

    def record(
        self,
        response: ApiResponse | None = None,
        error: BaseException | None = None,
    ) -> RetryState:
        """Record the current attempt's outcome and return the next state.

        When the next state is WAITING, the delay to sleep is ``delays[-1]``.
        """
        if response is not None:
            self.last_response = response
        self.last_error = error
        self.state = self.policy.next_state(self.attempt, error)
        if self.state is RetryState.WAITING:
            self.delays.append(self.policy.backoff_delay(self.attempt))
        return self.state
