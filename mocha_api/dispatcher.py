"""Async Dispatcher - Runs executions on a worker and returns futures.

The synchronous engine runs unchanged inside a worker; the caller gets a
``concurrent.futures.Future`` (awaitable from asyncio via
``asyncio.wrap_future``). The worker strategy is picked once, when the
client is built:

- ThreadPoolWorker (default): a per-client thread pool, created on first use.
- ExecutorWorker: wraps any injected ``concurrent.futures.Executor``.

Returned futures are already running when handed out, so ``cancel()`` is a
no-op: a dispatched execution always runs to completion.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Protocol, TypeVar

from mocha_api.errors import ConfigurationError

if TYPE_CHECKING:
    from mocha_api.engine import ExecutionEngine
    from mocha_api.models import ClientConfig, RequestDescriptor
    from mocha_api.response import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

SuccessCallback = Callable[["ApiResponse"], Any]
ErrorCallback = Callable[[BaseException], Any]

THREAD_NAME_PREFIX = "mocha-api"


class WorkerStrategy(Protocol):
    def submit(self, fn: Callable[[], Any]) -> Any: ...


class ExecutorWorker:
    """Runs work on a caller-supplied executor. The caller owns its lifetime."""

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        return self._executor.submit(fn)


class ThreadPoolWorker:
    """Runs work on a thread pool created on first use."""

    def __init__(self, max_workers: int | None = None) -> None:
        self._max_workers = max_workers
        self._pool: ThreadPoolExecutor | None = None
        self._lock = Lock()

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix=THREAD_NAME_PREFIX,
                )
            return self._pool

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        return self._get_pool().submit(fn)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)


def select_worker(custom: Any = None) -> WorkerStrategy:
    """Pick the worker strategy for a client."""
    if custom is None:
        return ThreadPoolWorker()
    if isinstance(custom, (ThreadPoolWorker, ExecutorWorker)):
        return custom
    if isinstance(custom, Executor) or callable(getattr(custom, "submit", None)):
        return ExecutorWorker(custom)
    raise ConfigurationError(
        f"worker must be a concurrent.futures.Executor, got {type(custom).__name__}"
    )


def _contained(callback: Callable[[Any], Any], arg: Any, label: str) -> BaseException | None:
    """Call ``callback(arg)``; return (never raise) what it raised."""
    try:
        callback(arg)
    except Exception as e:
        logger.debug("%s callback raised; ignoring", label, exc_info=True)
        return e
    return None


def deliver(
    future: Future[ApiResponse],
    on_success: SuccessCallback | None,
    on_error: ErrorCallback | None,
) -> None:
    """Route a completed future to the callbacks.

    A failing success callback is reported to the error callback; a failing
    error callback is logged and dropped. Nothing escapes into the worker.
    """
    error = future.exception()
    if error is None:
        if on_success is None:
            return
        error = _contained(on_success, future.result(), "success")
        if error is None:
            return
    if on_error is not None:
        _contained(on_error, error, "error")


class AsyncDispatcher:
    """Submits engine executions to a worker strategy."""

    def __init__(self, engine: ExecutionEngine, worker: WorkerStrategy) -> None:
        self._engine = engine
        self._worker = worker

    @property
    def worker(self) -> WorkerStrategy:
        return self._worker

    def execute_async(
        self,
        descriptor: RequestDescriptor,
        config: ClientConfig,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future[ApiResponse]:
        """Start an execution and return a future for its response.

        The future fails with the same error ``execute()`` would raise.
        Callbacks, when given, run on the worker after completion.
        """
        future: Future[ApiResponse] = Future()
        future.set_running_or_notify_cancel()

        def run() -> None:
            try:
                result = self._engine.run(descriptor, config)
            except BaseException as e:
                future.set_exception(e)
                return
            if result.ok:
                future.set_result(result.unwrap())
            else:
                future.set_exception(result.error)

        if on_success is not None or on_error is not None:
            future.add_done_callback(lambda f: deliver(f, on_success, on_error))

        try:
            self._worker.submit(run)
        except RuntimeError as e:
            # Executor already shut down; report through the future.
            future.set_exception(e)
        return future

    async def execute_awaitable(
        self,
        descriptor: RequestDescriptor,
        config: ClientConfig,
    ) -> ApiResponse:
        """Await an execution from asyncio without blocking the event loop."""
        return await asyncio.wrap_future(self.execute_async(descriptor, config))
