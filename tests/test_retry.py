"""Tests for RetryPolicy and RetryStatus.

Tests cover:
- State transitions for success, transient, and fatal outcomes
- Retry disabled by default
- Exponential backoff values and monotonicity
- Attempt bound of three
- The tenacity controller built from a policy: backoff waits and how failures surface
"""

from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st
from tenacity import RetryError

from mocha_api.errors import (
    InterceptorError,
    SecurityViolation,
    TransportError,
    TransportErrorKind,
)
from mocha_api.models import ClientConfig
from mocha_api.retry import RetryPolicy, RetryState, RetryStatus


def _transient() -> TransportError:
    return TransportError("timed out", TransportErrorKind.READ_TIMEOUT)


class TestNextState:
    def test_success(self) -> None:
        assert RetryPolicy(enabled=True).next_state(1, None) is RetryState.SUCCEEDED

    def test_transient_with_attempts_left_waits(self) -> None:
        policy = RetryPolicy(enabled=True)
        assert policy.next_state(1, _transient()) is RetryState.WAITING
        assert policy.next_state(2, _transient()) is RetryState.WAITING

    def test_transient_on_last_attempt_exhausts(self) -> None:
        assert RetryPolicy(enabled=True).next_state(3, _transient()) is RetryState.EXHAUSTED

    @pytest.mark.parametrize(
        "error",
        [
            TransportError("bad response", TransportErrorKind.OTHER),
            InterceptorError("nope"),
            SecurityViolation("file:///x", "scheme"),
            ValueError("unexpected"),
        ],
    )
    def test_non_transient_aborts_regardless_of_attempt(self, error: Exception) -> None:
        policy = RetryPolicy(enabled=True)
        assert policy.next_state(1, error) is RetryState.ABORTED
        assert policy.next_state(3, error) is RetryState.ABORTED

    def test_disabled_aborts_on_first_failure(self) -> None:
        assert RetryPolicy(enabled=False).next_state(1, _transient()) is RetryState.ABORTED

    def test_disabled_by_default(self) -> None:
        assert RetryPolicy().enabled is False
        assert RetryPolicy.from_config(ClientConfig()).enabled is False

    def test_transient_interceptor_error_retried(self) -> None:
        error = InterceptorError("503", transient=True)
        assert RetryPolicy(enabled=True).next_state(1, error) is RetryState.WAITING

    @pytest.mark.parametrize("kind", [k for k in TransportErrorKind if k is not TransportErrorKind.OTHER])
    def test_transient_kinds(self, kind: TransportErrorKind) -> None:
        error = TransportError("x", kind)
        assert error.transient
        assert RetryPolicy(enabled=True).next_state(1, error) is RetryState.WAITING


class TestBackoff:
    def test_default_delays(self) -> None:
        policy = RetryPolicy(enabled=True)
        assert [policy.backoff_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_custom_base(self) -> None:
        assert RetryPolicy(base_delay=0.25).backoff_delay(2) == 0.5

    def test_attempt_is_one_indexed(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy().backoff_delay(0)

    @given(
        base=st.floats(min_value=0, max_value=60, allow_nan=False),
        attempt=st.integers(min_value=1, max_value=10),
    )
    def test_monotonic_non_decreasing(self, base: float, attempt: int) -> None:
        policy = RetryPolicy(base_delay=base)
        assert policy.backoff_delay(attempt + 1) >= policy.backoff_delay(attempt)


class TestPolicyBounds:
    @pytest.mark.parametrize("attempts", [0, 4, 10])
    def test_max_attempts_bounded(self, attempts: int) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=attempts)

    def test_negative_base_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)

    def test_from_config(self) -> None:
        config = ClientConfig(retry_enabled=True, retry_base_delay=0.5, max_attempts=2)
        assert RetryPolicy.from_config(config) == RetryPolicy(
            enabled=True, max_attempts=2, base_delay=0.5
        )


class TestRetryStatus:
    def test_full_exhaustion_cycle(self) -> None:
        status = RetryStatus(RetryPolicy(enabled=True))
        states = []
        for _ in range(3):
            status.begin_attempt()
            states.append(status.record(error=_transient()))

        assert states == [RetryState.WAITING, RetryState.WAITING, RetryState.EXHAUSTED]
        assert status.attempt == 3
        assert status.delays == [1.0, 2.0]
        assert status.waited == 3.0
        assert status.finished

    def test_cannot_attempt_after_terminal_state(self) -> None:
        status = RetryStatus(RetryPolicy())
        status.begin_attempt()
        status.record(error=None)
        with pytest.raises(RuntimeError):
            status.begin_attempt()

    def test_attempt_index_starts_at_zero(self) -> None:
        status = RetryStatus(RetryPolicy())
        assert status.attempt == 0
        assert status.state is RetryState.ATTEMPTING
        assert status.begin_attempt() == 1

    def test_last_error_tracks_latest_attempt(self) -> None:
        status = RetryStatus(RetryPolicy(enabled=True))
        first, second = _transient(), _transient()
        status.begin_attempt()
        status.record(error=first)
        status.begin_attempt()
        status.record(error=second)
        assert status.last_error is second


class TestRetrying:
    """The tenacity controller built from a policy."""

    def _failing(self, *outcomes: BaseException | str) -> tuple[list[int], Any]:
        calls: list[int] = []

        def attempt() -> str:
            calls.append(len(calls) + 1)
            outcome = outcomes[min(len(calls), len(outcomes)) - 1]
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        return calls, attempt

    def test_retries_transient_until_success(self) -> None:
        delays: list[float] = []
        calls, attempt = self._failing(_transient(), _transient(), "ok")
        retrying = RetryPolicy(enabled=True).retrying(sleep=delays.append)

        assert retrying(attempt) == "ok"
        assert calls == [1, 2, 3]
        assert delays == [1.0, 2.0]

    def test_exhaustion_raises_retry_error_with_last_failure(self) -> None:
        failures = [_transient(), _transient(), _transient()]
        calls, attempt = self._failing(*failures)
        retrying = RetryPolicy(enabled=True, base_delay=0).retrying(sleep=lambda s: None)

        with pytest.raises(RetryError) as exc_info:
            retrying(attempt)
        assert calls == [1, 2, 3]
        assert exc_info.value.last_attempt.exception() is failures[2]

    def test_fatal_error_reraised_unchanged(self) -> None:
        error = TransportError("bad", TransportErrorKind.OTHER)
        calls, attempt = self._failing(error)
        retrying = RetryPolicy(enabled=True).retrying(sleep=lambda s: None)

        with pytest.raises(TransportError) as exc_info:
            retrying(attempt)
        assert exc_info.value is error
        assert calls == [1]

    def test_disabled_policy_makes_one_attempt(self) -> None:
        delays: list[float] = []
        calls, attempt = self._failing(_transient())
        with pytest.raises(TransportError):
            RetryPolicy().retrying(sleep=delays.append)(attempt)
        assert calls == [1]
        assert delays == []

    def test_before_sleep_sees_each_wait(self) -> None:
        waits: list[float] = []
        calls, attempt = self._failing(_transient(), "ok")
        retrying = RetryPolicy(enabled=True, base_delay=0.25).retrying(
            sleep=lambda s: None,
            before_sleep=lambda state: waits.append(state.next_action.sleep),
        )
        assert retrying(attempt) == "ok"
        assert waits == [0.25]

    @given(
        base=st.floats(min_value=0, max_value=5, allow_nan=False),
        attempts=st.integers(min_value=1, max_value=3),
    )
    def test_waits_match_backoff_delay(self, base: float, attempts: int) -> None:
        delays: list[float] = []
        policy = RetryPolicy(enabled=True, max_attempts=attempts, base_delay=base)
        calls, attempt = self._failing(_transient())
        with pytest.raises(RetryError):
            policy.retrying(sleep=delays.append)(attempt)
        assert len(calls) == attempts
        assert delays == pytest.approx([policy.backoff_delay(n) for n in range(1, attempts)])
