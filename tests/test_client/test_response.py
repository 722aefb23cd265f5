"""Tests for desklink.client.response -- identity parsing and error messages."""

from __future__ import annotations

import httpx
import pytest

from desklink.client.response import describe_failure, parse_user_identity
from desklink.exceptions import ProtocolError
from desklink.models import UserIdentity


def _response(status_code: int = 200, **kwargs) -> httpx.Response:
    return httpx.Response(status_code=status_code, **kwargs)


class TestParseUserIdentity:
    def test_full_user(self) -> None:
        resp = _response(
            json={"user": {"id": "u-42", "username": "alice", "email": "a@x.io", "uniqueId": "A1"}}
        )
        assert parse_user_identity(resp) == UserIdentity(
            id="u-42", username="alice", email="a@x.io", short_id="A1"
        )

    def test_numeric_id_becomes_string(self) -> None:
        resp = _response(json={"user": {"id": 42, "username": "alice"}})
        user = parse_user_identity(resp)
        assert user.id == "42"
        assert user.email is None
        assert user.short_id is None
        assert user.is_verified

    def test_extra_fields_are_ignored(self) -> None:
        resp = _response(json={"user": {"id": "1", "role": "admin"}, "ok": True})
        assert parse_user_identity(resp).id == "1"

    def test_same_response_same_identity(self) -> None:
        payload = {"user": {"id": "u-42", "username": "alice", "email": "a@x.io", "uniqueId": "A1"}}
        assert parse_user_identity(_response(json=payload)) == parse_user_identity(
            _response(json=payload)
        )

    def test_not_json(self) -> None:
        with pytest.raises(ProtocolError, match="not valid JSON"):
            parse_user_identity(_response(text="<html>oops</html>"))

    @pytest.mark.parametrize("body", [{}, {"user": None}, {"user": "alice"}, ["user"]])
    def test_missing_user_object(self, body) -> None:
        with pytest.raises(ProtocolError, match="'user' object"):
            parse_user_identity(_response(json=body))

    def test_missing_id(self) -> None:
        with pytest.raises(ProtocolError, match="user.id"):
            parse_user_identity(_response(json={"user": {"username": "alice"}}))

    def test_non_string_field(self) -> None:
        with pytest.raises(ProtocolError, match="user.email"):
            parse_user_identity(_response(json={"user": {"id": "1", "email": 7}}))


class TestDescribeFailure:
    def test_message_key(self) -> None:
        assert describe_failure(_response(500, json={"message": "boom"})) == "HTTP 500: boom"

    def test_error_key(self) -> None:
        assert describe_failure(_response(403, json={"error": "Forbidden"})) == "HTTP 403: Forbidden"

    def test_text_body(self) -> None:
        assert describe_failure(_response(502, text="Bad Gateway")) == "HTTP 502: Bad Gateway"

    def test_empty_body(self) -> None:
        assert describe_failure(_response(503)) == "HTTP 503"
