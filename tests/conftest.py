"""Pytest configuration and fixtures for mocha-api tests.

This file provides:
- FakeTransport: Scripted transport that records every call
- Resolver stubs: Deterministic host resolution for the security validator
- PortReservation / MockServer: Subprocess management for the integration server
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Generator, Mapping

import pytest

from mocha_api.client import ApiClient, ClientBuilder
from mocha_api.models import Timeouts, TransportResponse

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

# Host names used by unit tests, resolved without DNS.
STATIC_HOSTS: dict[str, list[str]] = {
    "api.example.com": ["93.184.216.34"],
    "other.example.com": ["93.184.216.35"],
    "internal.example.com": ["10.0.0.5"],
    "sneaky.example.com": ["93.184.216.36", "127.0.0.1"],
    "metadata.example.com": ["169.254.169.254"],
}


def static_resolver(host: str) -> list[str]:
    """Resolver stub for unit tests. Unknown hosts resolve to nothing."""
    return list(STATIC_HOSTS.get(host, []))


def make_transport_response(
    status_code: int = 200,
    headers: list[tuple[str, str]] | dict[str, str] | None = None,
    content: bytes = b"",
    elapsed_ms: float = 5.0,
) -> TransportResponse:
    """Create a TransportResponse for scripting FakeTransport.

    Prefer this over constructing TransportResponse directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    if isinstance(headers, dict):
        headers = list(headers.items())
    return TransportResponse(
        status_code=status_code,
        headers=headers or [],
        content=content,
        elapsed_ms=elapsed_ms,
    )


def json_response(body: bytes, status_code: int = 200) -> TransportResponse:
    return make_transport_response(
        status_code, [("Content-Type", "application/json")], body
    )


@dataclass
class SentRequest:
    """One call recorded by FakeTransport."""

    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None
    timeouts: Timeouts
    sent_at: float


Outcome = TransportResponse | BaseException | Callable[["SentRequest"], TransportResponse]


class FakeTransport:
    """Transport double that replays scripted outcomes.

    Each call consumes the next outcome; the last one repeats once the script
    runs out. An outcome is a TransportResponse to return, an exception to
    raise, or a callable receiving the SentRequest.

    Usage:
        transport = FakeTransport(TransportError("down", kind), make_transport_response(200))
        client = make_client(transport, retry=True)
    """

    def __init__(self, *outcomes: Outcome) -> None:
        self._outcomes = list(outcomes) or [make_transport_response()]
        self._lock = Lock()
        self.calls: list[SentRequest] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
        timeouts: Timeouts,
    ) -> TransportResponse:
        sent = SentRequest(method, url, dict(headers), body, timeouts, time.monotonic())
        with self._lock:
            index = len(self.calls)
            self.calls.append(sent)
            outcome = self._outcomes[min(index, len(self._outcomes) - 1)]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(sent)
        return outcome

    def close(self) -> None:
        self.closed = True


def make_client(
    transport: FakeTransport | None = None,
    *,
    retry: bool = False,
    allow_localhost: bool = False,
    retry_base_delay: float = 1.0,
    request_interceptors: list[Any] | None = None,
    response_interceptors: list[Any] | None = None,
    **builder_calls: Any,
) -> ApiClient:
    """Build an ApiClient wired to a FakeTransport and the static resolver.

    Extra keyword arguments call the ClientBuilder method of the same name
    with the given value (e.g. ``connect_timeout=2``).
    """
    builder = (
        ClientBuilder()
        .transport(transport or FakeTransport())
        .resolver(static_resolver)
        .retry(retry)
        .allow_localhost(allow_localhost)
        .retry_base_delay(retry_base_delay)
    )
    for interceptor in request_interceptors or []:
        builder.add_request_interceptor(interceptor)
    for interceptor in response_interceptors or []:
        builder.add_response_interceptor(interceptor)
    for name, value in builder_calls.items():
        getattr(builder, name)(value)
    return builder.build()


@pytest.fixture
def transport() -> FakeTransport:
    """A FakeTransport answering 200 with an empty body."""
    return FakeTransport()


@pytest.fixture
def no_sleep() -> Generator[Any, None, None]:
    """Patch the engine's backoff sleep; yields the mock to inspect delays."""
    from unittest.mock import patch

    with patch("mocha_api.engine.time.sleep") as mock_sleep:
        yield mock_sleep


# =============================================================================
# Integration Server
# =============================================================================


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    find_free_port() style allocation has a race window - another process can
    grab the port between when we find it and when our server binds. This class
    keeps the socket open until just before the server starts.
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py under uvicorn.
    """

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation: PortReservation | None = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable process; nothing more we can do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the integration mock server once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
