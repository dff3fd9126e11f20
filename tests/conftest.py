"""Pytest configuration and fixtures for digest-xmlrpc tests.

This file provides:
- xmlrpc_response / fault_response: httpx responses carrying XML-RPC bodies
- ScriptedServer: an httpx.MockTransport handler replaying queued responses
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the mock XML-RPC server
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
import xmlrpc.client
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

# Project root for subprocess cwd
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def xmlrpc_response(
    value: Any = None,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Create an httpx Response whose body is an XML-RPC method response."""
    body = xmlrpc.client.dumps((value,), methodresponse=True, allow_none=True)
    return httpx.Response(
        status_code,
        headers={"Content-Type": "text/xml", **(headers or {})},
        content=body.encode("utf-8"),
    )


def fault_response(code: int, message: str) -> httpx.Response:
    """Create an httpx Response whose body is an XML-RPC fault."""
    body = xmlrpc.client.dumps(xmlrpc.client.Fault(code, message), methodresponse=True)
    return httpx.Response(200, headers={"Content-Type": "text/xml"}, content=body.encode("utf-8"))


def challenge_response(challenge: str) -> httpx.Response:
    """Create a 401 response carrying a WWW-Authenticate challenge."""
    return httpx.Response(401, headers={"WWW-Authenticate": challenge}, content=b"Unauthorized")


class ScriptedServer:
    """httpx.MockTransport handler that replays queued responses in order.

    Each queued item is either an httpx.Response or an exception to raise.
    Every request is recorded in ``requests``. A request beyond the script
    fails the test.

    Usage:
        server = ScriptedServer(challenge_response(...), xmlrpc_response(42))
        client = Client(options, http_transport=server.transport)
    """

    def __init__(self, *script: httpx.Response | Exception) -> None:
        self._script = list(script)
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._script:
            raise AssertionError(f"Unexpected request #{len(self.requests)}")
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays open until just before the server starts, so no other
    process can take the port in between.
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
    """Manages the mock XML-RPC server subprocess for integration tests.

    Runs tests/integration/mock_server.py, which serves an open endpoint,
    a Digest-protected endpoint and a Basic-protected endpoint.
    """

    def __init__(self, reservation: PortReservation) -> None:
        self._reservation = reservation
        self.port = reservation.port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
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
        """Stop the mock server subprocess (SIGTERM, then SIGKILL after 5s)."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait(timeout=5)
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the mock XML-RPC server once per test session."""
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
        test_path = Path(item.path)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
