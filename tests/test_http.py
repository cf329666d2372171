"""
Tests for the HTTP transport: timeouts, retries on transient failures only.
"""
import logging

import pytest
import requests

from nowscrobbling.api.errors import NetworkError
from nowscrobbling.api.http import HttpClient, HttpResponse, redact


class FakeRawResponse:
    def __init__(self, status_code, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


class FakeSession:
    """Replays queued responses/exceptions for requests.Session.get."""

    def __init__(self, *items):
        self.items = list(items)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def sleeps():
    return []


def make_client(session, sleeps, max_retries=2):
    return HttpClient(timeout=5.0, max_retries=max_retries, session=session, sleep=sleeps.append)


def test_success_passes_through(sleeps):
    session = FakeSession(FakeRawResponse(200, '{"ok": true}', {"ETag": '"v1"'}))
    response = make_client(session, sleeps).get("https://api.trakt.tv/x", headers={"A": "b"})

    assert response.status_code == 200
    assert response.text == '{"ok": true}'
    assert response.header("etag") == '"v1"'
    assert session.calls[0]["timeout"] == 5.0
    assert session.calls[0]["headers"] == {"A": "b"}
    assert sleeps == []


def test_server_error_is_retried(sleeps):
    session = FakeSession(FakeRawResponse(502), FakeRawResponse(200, "{}"))
    response = make_client(session, sleeps).get("https://api.trakt.tv/x")
    assert response.status_code == 200
    assert len(session.calls) == 2
    assert sleeps == [0.5]


def test_persistent_server_error_is_returned_after_retries(sleeps):
    session = FakeSession(FakeRawResponse(500), FakeRawResponse(503), FakeRawResponse(503))
    response = make_client(session, sleeps).get("https://api.trakt.tv/x")
    assert response.status_code == 503
    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.parametrize("status", [304, 400, 401, 404, 429])
def test_non_server_errors_are_not_retried(sleeps, status):
    session = FakeSession(FakeRawResponse(status))
    response = make_client(session, sleeps).get("https://api.trakt.tv/x")
    assert response.status_code == status
    assert len(session.calls) == 1
    assert sleeps == []


def test_timeout_then_success(sleeps):
    session = FakeSession(requests.Timeout("read timed out"), FakeRawResponse(200, "{}"))
    response = make_client(session, sleeps).get("https://api.trakt.tv/x")
    assert response.status_code == 200
    assert sleeps == [0.5]


def test_connection_errors_become_network_error(sleeps):
    session = FakeSession(*[requests.ConnectionError("refused")] * 3)
    with pytest.raises(NetworkError) as excinfo:
        make_client(session, sleeps).get("https://api.trakt.tv/x")
    assert excinfo.value.url == "https://api.trakt.tv/x"
    assert excinfo.value.status_code == 0
    assert len(session.calls) == 3


def test_zero_retries(sleeps):
    session = FakeSession(FakeRawResponse(500))
    response = make_client(session, sleeps, max_retries=0).get("https://api.trakt.tv/x")
    assert response.status_code == 500
    assert len(session.calls) == 1


def test_response_header_lookup_is_case_insensitive():
    response = HttpResponse(200, {"Retry-After": "30"})
    assert response.header("retry-after") == "30"
    assert response.header("ETag") is None


def test_redact_masks_credentials_only():
    url = "https://ws.audioscrobbler.com/2.0/?method=user.getrecenttracks&api_key=secret-key&format=json"
    assert redact(url) == "https://ws.audioscrobbler.com/2.0/?method=user.getrecenttracks&api_key=***&format=json"
    assert redact("https://api.trakt.tv/users/someone/watching") == "https://api.trakt.tv/users/someone/watching"


def test_network_error_never_carries_the_api_key(sleeps, caplog):
    url = "https://ws.audioscrobbler.com/2.0/?method=user.getinfo&api_key=secret-key"
    refused = requests.ConnectionError("Max retries exceeded with url: /2.0/?method=user.getinfo&api_key=secret-key")
    session = FakeSession(*[refused] * 3)

    with caplog.at_level(logging.WARNING, logger="api.http"):
        with pytest.raises(NetworkError) as excinfo:
            make_client(session, sleeps).get(url)

    assert "secret-key" not in caplog.text
    assert "api_key=***" in caplog.text
    assert "secret-key" not in excinfo.value.url
    assert "secret-key" not in excinfo.value.message
    assert session.calls[0]["url"] == url


def test_exhausted_server_errors_log_redacted_url(sleeps, caplog):
    session = FakeSession(*[FakeRawResponse(503)] * 3)
    with caplog.at_level(logging.WARNING, logger="api.http"):
        make_client(session, sleeps).get("https://ws.audioscrobbler.com/2.0/?api_key=secret-key")
    assert "still failing" in caplog.text
    assert "secret-key" not in caplog.text
