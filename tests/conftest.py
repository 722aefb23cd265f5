"""Shared test fixtures for desklink.

Provides isolated config/data directories, a clean global output manager,
mock verification servers built on :class:`httpx.MockTransport`, and a
helper that plays the browser's part in the authorization redirect.
"""

from __future__ import annotations

import json
import threading
import time
from http.client import HTTPConnection
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from desklink.auth.token_store import TokenStore
from desklink.client.verify_client import VerificationClient
from desklink.models import CallbackConfig, GlobalConfig, HeartbeatConfig, VerifyConfig
from desklink.output import OutputManager, reset_output, set_output


APP_URL = "https://auth.example.test"
VERIFY_URL = f"{APP_URL}/api/auth/desktop/verify"
LOGOUT_URL = f"{APP_URL}/api/auth/desktop/logout"

USER_PAYLOAD = {
    "user": {
        "id": "u-42",
        "username": "alice",
        "email": "alice@example.com",
        "uniqueId": "A1",
    }
}


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams and the
    test finishes, the cached references become stale. Resetting forces a
    fresh manager on next use.
    """
    yield
    reset_output()


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a plain, quiet OutputManager."""
    manager = OutputManager(no_color=True, quiet=True)
    set_output(manager)
    return manager


# ---------------------------------------------------------------------------
# Isolated environment
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user state, and clears DESKLINK_* variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("desklink.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("DESKLINK_APP_URL", raising=False)
    return tmp_path


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "device_token.txt"


@pytest.fixture
def store(token_path: Path) -> TokenStore:
    return TokenStore(token_path)


@pytest.fixture
def fast_config() -> GlobalConfig:
    """Config with short timeouts, no backoff delay, and a fast heartbeat."""
    return GlobalConfig(
        app_url=APP_URL,
        device_name="test-box",
        device_info="TestOS 1.0 - McWhitelist Desktop",
        callback=CallbackConfig(base_port=0, timeout_seconds=5),
        verify=VerifyConfig(timeout_seconds=2, max_attempts=3, backoff_ms=0),
        heartbeat=HeartbeatConfig(interval_seconds=0.05),
    )


# ---------------------------------------------------------------------------
# Mock remote authority
# ---------------------------------------------------------------------------


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    """Build an httpx.Response with a JSON body."""
    return httpx.Response(status_code=status_code, json=data)


class FakeAuthority:
    """Scriptable stand-in for the verify/logout endpoints.

    ``verify_responses`` is consumed in order; when it runs out,
    ``default_verify`` answers. Every request is recorded.
    """

    def __init__(self, default_verify: Optional[Callable[[], httpx.Response]] = None) -> None:
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.verify_responses: list[httpx.Response] = []
        self.default_verify = default_verify or (lambda: json_response(USER_PAYLOAD))
        self.logout_status = 200
        self._lock = threading.Lock()

    @property
    def verify_calls(self) -> list[dict[str, Any]]:
        with self._lock:
            return [body for path, body in self.requests if path.endswith("/verify")]

    @property
    def logout_calls(self) -> list[dict[str, Any]]:
        with self._lock:
            return [body for path, body in self.requests if path.endswith("/logout")]

    def revoke(self) -> None:
        """Answer every further verification with 401."""
        with self._lock:
            self.verify_responses.clear()
            self.default_verify = lambda: json_response({"error": "Unauthorized"}, 401)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        with self._lock:
            self.requests.append((request.url.path, body))
            if request.url.path.endswith("/logout"):
                return httpx.Response(self.logout_status, json={})
            if self.verify_responses:
                return self.verify_responses.pop(0)
            return self.default_verify()

    def client(self, config: Optional[VerifyConfig] = None) -> VerificationClient:
        return VerificationClient(
            VERIFY_URL,
            LOGOUT_URL,
            config or VerifyConfig(timeout_seconds=2, backoff_ms=0),
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()


# ---------------------------------------------------------------------------
# Browser simulation
# ---------------------------------------------------------------------------


def simulate_callback(port: int, path: str) -> tuple[int, str]:
    """Send a GET to the local callback listener and return status and body."""
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request("GET", path)
        response = conn.getresponse()
        return response.status, response.read().decode("utf-8")
    finally:
        conn.close()


class FakeBrowser:
    """``open_browser`` stand-in that follows the redirect like a real browser.

    Parses the redirect_uri out of the authorization URL and, after a short
    delay, requests it with *query* on a background thread.
    """

    def __init__(self, query: Optional[str] = "token=abc123&username=alice&shortId=A1") -> None:
        self.query = query
        self.opened: list[str] = []
        self.responses: list[tuple[int, str]] = []
        self.done = threading.Event()

    def __call__(self, url: str) -> bool:
        from urllib.parse import parse_qs, urlparse

        self.opened.append(url)
        if self.query is None:
            return True
        redirect = urlparse(parse_qs(urlparse(url).query)["redirect_uri"][0])
        target = f"{redirect.path}?{self.query}"

        def follow() -> None:
            time.sleep(0.1)
            self.responses.append(simulate_callback(redirect.port, target))
            self.done.set()

        threading.Thread(target=follow, daemon=True).start()
        return True
