"""Tests for desklink.login.listener -- port selection and the callback endpoint."""

from __future__ import annotations

import socket
import threading
import time
from unittest.mock import patch

import pytest

from conftest import simulate_callback
from desklink.exceptions import LoginInProgressError, NoAvailablePortError
from desklink.login.listener import (
    CallbackListener,
    CallbackOutcome,
    CallbackParams,
    find_available_port,
    render_confirmation_page,
)


# ---------------------------------------------------------------------------
# Port selection
# ---------------------------------------------------------------------------


class TestFindAvailablePort:
    def test_first_free_port(self) -> None:
        with patch("desklink.login.listener._can_bind", return_value=True):
            assert find_available_port(8787, 10) == 8787

    def test_skips_bound_ports(self) -> None:
        bound = {8787, 8788, 8789}
        with patch(
            "desklink.login.listener._can_bind", side_effect=lambda host, port: port not in bound
        ) as can_bind:
            assert find_available_port(8787, 10) == 8790
        assert [c.args[1] for c in can_bind.call_args_list] == [8787, 8788, 8789, 8790]

    def test_all_bound_raises(self) -> None:
        with patch("desklink.login.listener._can_bind", return_value=False) as can_bind:
            with pytest.raises(NoAvailablePortError, match="8787 and 8796"):
                find_available_port(8787, 10)
        assert can_bind.call_count == 10

    def test_real_bound_socket_is_skipped(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as held:
            held.bind(("127.0.0.1", 0))
            held.listen(1)
            port = held.getsockname()[1]
            chosen = find_available_port(port, 5)
        assert chosen != port
        assert port < chosen < port + 5


# ---------------------------------------------------------------------------
# Callback parameters and confirmation page
# ---------------------------------------------------------------------------


class TestCallbackParams:
    def test_from_query(self) -> None:
        params = CallbackParams.from_query("token=abc123&username=alice&shortId=A1")
        assert params == CallbackParams(token="abc123", username="alice", short_id="A1")
        assert params.granted

    def test_missing_token(self) -> None:
        params = CallbackParams.from_query("username=alice")
        assert params.token is None
        assert not params.granted

    def test_empty_token_is_not_granted(self) -> None:
        assert not CallbackParams.from_query("token=&username=alice").granted

    def test_percent_decoding(self) -> None:
        params = CallbackParams.from_query("token=a%2Bb&username=J%C3%BCrgen")
        assert params.token == "a+b"
        assert params.username == "Jürgen"


class TestConfirmationPage:
    def test_success_page_shows_user(self) -> None:
        page = render_confirmation_page(CallbackParams("t", "alice", "A1"), "McWhitelist")
        assert "Authorization Successful" in page
        assert "alice (A1)" in page
        assert "McWhitelist account" in page
        assert "window.close()" in page

    def test_values_are_escaped(self) -> None:
        page = render_confirmation_page(CallbackParams("t", "<script>x</script>", "A&1"))
        assert "<script>x</script>" not in page
        assert "&lt;script&gt;x&lt;/script&gt;" in page
        assert "A&amp;1" in page

    def test_denied_page(self) -> None:
        page = render_confirmation_page(CallbackParams(None, "alice", "A1"))
        assert "Authorization Failed" in page
        assert "alice" not in page


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


@pytest.fixture
def listener():
    lst = CallbackListener(0)
    lst.start()
    yield lst
    lst.stop()


class TestCallbackListener:
    def test_redirect_uri_uses_bound_port(self, listener: CallbackListener) -> None:
        assert listener.port != 0
        assert listener.redirect_uri == f"http://localhost:{listener.port}/callback"

    def test_receives_callback(self, listener: CallbackListener) -> None:
        responses: list[tuple[int, str]] = []

        def browser() -> None:
            time.sleep(0.1)
            responses.append(
                simulate_callback(listener.port, "/callback?token=abc123&username=alice&shortId=A1")
            )

        t = threading.Thread(target=browser)
        t.start()
        result = listener.wait(timeout=5)
        t.join()

        assert result.outcome is CallbackOutcome.RECEIVED
        assert result.params == CallbackParams("abc123", "alice", "A1")
        status, body = responses[0]
        assert status == 200
        assert "alice (A1)" in body

    def test_page_is_complete_when_stopped_right_after_receipt(
        self, listener: CallbackListener
    ) -> None:
        responses: list[tuple[int, str]] = []
        t = threading.Thread(
            target=lambda: responses.append(
                simulate_callback(listener.port, "/callback?token=abc&username=bob&shortId=B2")
            )
        )
        t.start()
        result = listener.wait(timeout=5)
        listener.stop()
        t.join()

        assert result.outcome is CallbackOutcome.RECEIVED
        assert responses[0][1].rstrip().endswith("</html>")

    def test_other_paths_get_404(self, listener: CallbackListener) -> None:
        status, _ = simulate_callback(listener.port, "/favicon.ico")
        assert status == 404
        assert listener.wait(timeout=0.2).outcome is CallbackOutcome.TIMED_OUT

    def test_only_first_callback_is_published(self, listener: CallbackListener) -> None:
        simulate_callback(listener.port, "/callback?token=first")
        simulate_callback(listener.port, "/callback?token=second")
        assert listener.wait(timeout=2).params.token == "first"
        assert listener.wait(timeout=0.2).outcome is CallbackOutcome.TIMED_OUT

    def test_timeout(self, listener: CallbackListener) -> None:
        started = time.monotonic()
        result = listener.wait(timeout=0.3)
        assert result.outcome is CallbackOutcome.TIMED_OUT
        assert result.params is None
        assert time.monotonic() - started >= 0.25

    def test_cancel_wakes_waiter(self, listener: CallbackListener) -> None:
        threading.Timer(0.1, listener.cancel).start()
        assert listener.wait(timeout=5).outcome is CallbackOutcome.CANCELLED

    def test_stop_releases_port(self) -> None:
        lst = CallbackListener(0)
        lst.start()
        port = lst.port
        lst.stop()
        assert not lst.is_running
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(("127.0.0.1", port))

    def test_stop_is_idempotent(self) -> None:
        lst = CallbackListener(0)
        lst.start()
        lst.stop()
        lst.stop()

    def test_one_listener_per_process(self, listener: CallbackListener) -> None:
        with pytest.raises(LoginInProgressError):
            CallbackListener(0).start()

    def test_taken_port_raises(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as held:
            held.bind(("127.0.0.1", 0))
            held.listen(1)
            lst = CallbackListener(held.getsockname()[1])
            with pytest.raises(NoAvailablePortError):
                lst.start()
        # The process-wide slot was released again.
        with CallbackListener(0) as again:
            assert again.is_running


class TestIdleConnections:
    def test_callback_received_while_idle_connection_is_open(
        self, listener: CallbackListener
    ) -> None:
        with socket.create_connection(("127.0.0.1", listener.port)):
            status, body = simulate_callback(
                listener.port, "/callback?token=abc123&username=alice&shortId=A1"
            )
            result = listener.wait(timeout=2)

        assert status == 200
        assert "alice (A1)" in body
        assert result.outcome is CallbackOutcome.RECEIVED
        assert result.params.token == "abc123"

    def test_stop_returns_with_idle_connection_open(self) -> None:
        lst = CallbackListener(0)
        lst.start()
        with socket.create_connection(("127.0.0.1", lst.port)):
            assert lst.wait(timeout=0.3).outcome is CallbackOutcome.TIMED_OUT
            stopper = threading.Thread(target=lst.stop)
            stopper.start()
            stopper.join(2.0)
            assert not stopper.is_alive()
        assert not lst.is_running

    def test_idle_connection_is_closed_by_server(self) -> None:
        with patch("desklink.login.listener._CallbackHandler.timeout", 0.2):
            with CallbackListener(0) as lst:
                with socket.create_connection(("127.0.0.1", lst.port)) as idle:
                    idle.settimeout(2.0)
                    assert idle.recv(1024) == b""
