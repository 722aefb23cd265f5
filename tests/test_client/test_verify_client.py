"""Tests for desklink.client.verify_client -- verification protocol and retry."""

from __future__ import annotations

from unittest.mock import call, patch

import httpx
import pytest

from conftest import USER_PAYLOAD, FakeAuthority, json_response
from desklink.exceptions import (
    NetworkError,
    ProtocolError,
    UnauthorizedError,
    VerificationUnavailableError,
)
from desklink.models import UserIdentity, VerifyConfig


SLEEP = "desklink.client.verify_client.time.sleep"


def _raise_connect_error() -> httpx.Response:
    raise httpx.ConnectError("connection refused")


class TestVerify:
    def test_success_returns_identity(self, authority: FakeAuthority) -> None:
        with authority.client() as client:
            user = client.verify("dev-token", "sess-token")

        assert user == UserIdentity(id="u-42", username="alice", email="alice@example.com", short_id="A1")
        assert authority.verify_calls == [{"deviceToken": "dev-token", "sessionToken": "sess-token"}]

    def test_401_raises_without_retry(self, authority: FakeAuthority) -> None:
        authority.revoke()
        with patch(SLEEP) as mock_sleep, authority.client() as client:
            with pytest.raises(UnauthorizedError):
                client.verify("dev-token", "sess-token")
        assert len(authority.verify_calls) == 1
        mock_sleep.assert_not_called()

    def test_malformed_body_is_not_retried(self, authority: FakeAuthority) -> None:
        authority.default_verify = lambda: json_response({"ok": True})
        with patch(SLEEP) as mock_sleep, authority.client() as client:
            with pytest.raises(ProtocolError):
                client.verify("dev-token", "sess-token")
        assert len(authority.verify_calls) == 1
        mock_sleep.assert_not_called()

    def test_server_errors_exhaust_three_attempts(self, authority: FakeAuthority) -> None:
        authority.default_verify = lambda: json_response({"message": "down"}, 503)
        config = VerifyConfig(timeout_seconds=2, max_attempts=3, backoff_ms=2000)

        with patch(SLEEP) as mock_sleep, authority.client(config) as client:
            with pytest.raises(VerificationUnavailableError) as exc_info:
                client.verify("dev-token", "sess-token")

        assert len(authority.verify_calls) == 3
        assert mock_sleep.call_args_list == [call(2.0), call(4.0)]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, NetworkError)
        assert "HTTP 503" in str(exc_info.value)

    def test_transport_errors_are_retried(self) -> None:
        authority = FakeAuthority(default_verify=_raise_connect_error)
        with patch(SLEEP), authority.client() as client:
            with pytest.raises(VerificationUnavailableError) as exc_info:
                client.verify("dev-token", "sess-token")
        assert len(authority.verify_calls) == 3
        assert "ConnectError" in str(exc_info.value.__cause__)

    def test_recovers_after_transient_failure(self, authority: FakeAuthority) -> None:
        authority.verify_responses = [
            json_response({}, 500),
            json_response({}, 502),
            json_response(USER_PAYLOAD),
        ]
        with patch(SLEEP) as mock_sleep, authority.client() as client:
            user = client.verify("dev-token", "sess-token")
        assert user.id == "u-42"
        assert mock_sleep.call_count == 2

    def test_401_after_transient_failure_stops(self, authority: FakeAuthority) -> None:
        authority.verify_responses = [json_response({}, 500), json_response({}, 401)]
        with patch(SLEEP), authority.client() as client:
            with pytest.raises(UnauthorizedError):
                client.verify("dev-token", "sess-token")
        assert len(authority.verify_calls) == 2

    def test_max_attempts_override(self, authority: FakeAuthority) -> None:
        authority.default_verify = lambda: json_response({}, 500)
        with patch(SLEEP), authority.client() as client:
            with pytest.raises(VerificationUnavailableError):
                client.verify("dev-token", "sess-token", max_attempts=1)
        assert len(authority.verify_calls) == 1

    def test_read_timeout_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        from desklink.client.verify_client import VerificationClient

        client = VerificationClient(
            "https://x.test/verify",
            "https://x.test/logout",
            VerifyConfig(max_attempts=2, backoff_ms=0),
            transport=httpx.MockTransport(handler),
        )
        with patch(SLEEP):
            with pytest.raises(VerificationUnavailableError) as exc_info:
                client.verify("d", "s")
        client.close()
        assert "ReadTimeout" in str(exc_info.value)


class TestPing:
    def test_single_attempt_on_failure(self, authority: FakeAuthority) -> None:
        authority.default_verify = lambda: json_response({}, 500)
        with patch(SLEEP) as mock_sleep, authority.client() as client:
            with pytest.raises(NetworkError):
                client.ping("dev-token", "sess-token")
        assert len(authority.verify_calls) == 1
        mock_sleep.assert_not_called()

    def test_401(self, authority: FakeAuthority) -> None:
        authority.revoke()
        with authority.client() as client:
            with pytest.raises(UnauthorizedError):
                client.ping("dev-token", "sess-token")

    def test_success(self, authority: FakeAuthority) -> None:
        with authority.client() as client:
            assert client.ping("dev-token", "sess-token").username == "alice"


class TestLogout:
    def test_posts_device_token(self, authority: FakeAuthority) -> None:
        with authority.client() as client:
            assert client.logout("dev-token") is True
        assert authority.logout_calls == [{"deviceToken": "dev-token"}]

    def test_http_failure_returns_false(self, authority: FakeAuthority) -> None:
        authority.logout_status = 500
        with authority.client() as client:
            assert client.logout("dev-token") is False

    def test_transport_failure_returns_false(self) -> None:
        from desklink.client.verify_client import VerificationClient

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline")

        with VerificationClient(
            "https://x.test/verify", "https://x.test/logout", transport=httpx.MockTransport(handler)
        ) as client:
            assert client.logout("dev-token") is False
