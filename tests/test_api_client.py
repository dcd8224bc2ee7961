from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from services.api_client import HttpResponse, RequestsHttpClient
from services.errors import NetworkError


def _session_returning(status_code=200, headers=None, text=""):
    session = MagicMock()
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    resp.text = text
    session.request.return_value = resp
    return session


def test_request_passes_json_headers_and_timeout():
    session = _session_returning(200, {"Content-Type": "application/json"}, '{"ok": true}')
    client = RequestsHttpClient(timeout_seconds=7, session=session)

    resp = client.request("post", "https://example.test/x", headers={"A": "b"}, json_body={"k": 1})

    kwargs = session.request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["json"] == {"k": 1}
    assert kwargs["headers"] == {"A": "b"}
    assert kwargs["timeout"] == 7
    assert resp == HttpResponse(200, {"content-type": "application/json"}, '{"ok": true}')
    assert resp.content_type == "application/json"
    assert resp.json() == {"ok": True}


def test_timeout_becomes_network_error():
    session = MagicMock()
    session.request.side_effect = requests.Timeout("read timed out")
    client = RequestsHttpClient(timeout_seconds=1, session=session)

    with pytest.raises(NetworkError, match="timed out after 1s"):
        client.request("POST", "https://example.test/x")


def test_connection_error_becomes_network_error():
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("refused")
    client = RequestsHttpClient(session=session)

    with pytest.raises(NetworkError) as excinfo:
        client.request("POST", "https://example.test/x")
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_non_2xx_is_returned_not_raised():
    client = RequestsHttpClient(session=_session_returning(500, {}, "boom"))
    assert client.request("POST", "https://example.test/x").status_code == 500
