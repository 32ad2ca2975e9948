import base64
import json
from typing import Optional
from unittest.mock import MagicMock

import pytest
import requests
from requests import Response

from labctl.api import ApiClient, basic_auth_header
from labctl.errors import DecodeError, RemoteError, StatusError, TransportError
from labctl.types import RepoSettingsApply, TokenResponse

BASE_URL = "https://svc.example.test"


def make_response(status: int, body: bytes = b"", content_type: Optional[str] = None) -> Response:
    resp = Response()
    resp.status_code = status
    resp._content = body
    if content_type:
        resp.headers["Content-Type"] = content_type
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ApiClient(BASE_URL, session=session)


def sent(session) -> dict:
    return session.request.call_args.kwargs


def test_basic_auth_header():
    expected = "Basic " + base64.b64encode(b"cytoken:secret").decode()

    assert basic_auth_header("cytoken", "secret") == expected


@pytest.mark.parametrize(
    "content_type",
    [
        pytest.param("application/json", id="plain"),
        pytest.param("application/json; charset=utf-8", id="with-charset"),
    ],
)
def test_perform__remote_error(client, session, content_type):
    body = json.dumps({"code": 7, "error": "no such namespace"}).encode()
    session.request.return_value = make_response(404, body, content_type)

    with pytest.raises(RemoteError) as exc:
        client.perform("GET", "/api/v1/namespaces")

    assert exc.value.code == 7
    assert exc.value.message == "no such namespace"
    assert str(exc.value) == "remote error: no such namespace (7)"


def test_perform__status_error_without_json(client, session):
    """The body is not JSON and must not be decoded, even with a response model"""
    session.request.return_value = make_response(502, b"{broken", "text/html")

    with pytest.raises(StatusError) as exc:
        client.perform("GET", "/api/v1/token", response_model=TokenResponse)

    assert exc.value.status == 502
    assert not isinstance(exc.value, RemoteError)


def test_perform__status_error_without_content_type(client, session):
    session.request.return_value = make_response(401, b'{"code": 1, "error": "nope"}')

    with pytest.raises(StatusError):
        client.perform("GET", "/api/v1/token")


def test_perform__undecodable_error_envelope(client, session):
    session.request.return_value = make_response(400, b"not json", "application/json")

    with pytest.raises(DecodeError):
        client.perform("POST", "/api/v1/account", body={"email": "a"})


def test_perform__no_model_ignores_body(client, session):
    session.request.return_value = make_response(200, b"<html>whatever</html>", "text/html")

    assert client.perform("POST", "/vcr/v1/repo/ns/repo") is None


def test_perform__decodes_model(client, session):
    session.request.return_value = make_response(200, b'{"token": "abc"}', "application/json")

    resp = client.perform("GET", "/api/v1/token", response_model=TokenResponse)

    assert resp == TokenResponse(token="abc")


def test_perform__decode_error(client, session):
    session.request.return_value = make_response(200, b'{"nothing": 1}', "application/json")

    with pytest.raises(DecodeError):
        client.perform("GET", "/api/v1/token", response_model=TokenResponse)


@pytest.mark.parametrize(
    "exception",
    [
        requests.ConnectionError("connection refused"),
        requests.Timeout("timed out"),
        requests.exceptions.InvalidURL("bad url"),
    ],
)
def test_perform__transport_error(client, session, exception):
    session.request.side_effect = exception

    with pytest.raises(TransportError):
        client.perform("GET", "/api/v1/namespaces")


def test_perform__no_content_type_without_body(client, session):
    session.request.return_value = make_response(200)

    client.perform("GET", "/api/v1/namespaces")

    assert "Content-Type" not in sent(session)["headers"]
    assert sent(session)["data"] is None
    assert sent(session)["url"] == f"{BASE_URL}/api/v1/namespaces"
    assert sent(session)["method"] == "GET"


def test_perform__json_body(client, session):
    session.request.return_value = make_response(200)

    client.perform("POST", "/api/v1/account", body={"email": "me@example.com"})

    assert sent(session)["headers"]["Content-Type"] == "application/json"
    assert json.loads(sent(session)["data"]) == {"email": "me@example.com"}


def test_perform__model_body_skips_unset_fields(client, session):
    session.request.return_value = make_response(200)

    client.perform("PUT", "/vcr/v1/repo/ns/repo/update-settings", body=RepoSettingsApply())

    assert json.loads(sent(session)["data"]) == {}


def test_perform__caller_headers_win(client, session):
    session.request.return_value = make_response(200)

    client.perform(
        "POST",
        "/api/v1/account",
        headers={"Authorization": "Bearer other", "Content-Type": "application/vnd.custom"},
        body={},
    )

    assert sent(session)["headers"]["Authorization"] == "Bearer other"
    assert sent(session)["headers"]["Content-Type"] == "application/vnd.custom"


def test_perform__absolute_url(client, session):
    session.request.return_value = make_response(200)

    client.perform("POST", "https://allow.pub/api/v1/personal-token")

    assert sent(session)["url"] == "https://allow.pub/api/v1/personal-token"


@pytest.mark.parametrize(
    ["call", "method"],
    [
        pytest.param(lambda c: c.token_get("tok", "/x"), "GET", id="get"),
        pytest.param(lambda c: c.token_post("tok", "/x", {}), "POST", id="post"),
        pytest.param(lambda c: c.token_put("tok", "/x", {}), "PUT", id="put"),
    ],
)
def test_token_wrappers_use_cytoken(client, session, call, method):
    session.request.return_value = make_response(200)

    call(client)

    assert sent(session)["method"] == method
    assert sent(session)["headers"]["Authorization"] == basic_auth_header("cytoken", "tok")


def test_basic_get_uses_credentials(client, session):
    session.request.return_value = make_response(200, b'{"token": "t"}', "application/json")

    resp = client.basic_get("me@example.com", "pw", "/api/v1/token", TokenResponse)

    assert resp.token == "t"
    assert sent(session)["headers"]["Authorization"] == basic_auth_header("me@example.com", "pw")


def test_post_is_unauthenticated(client, session):
    session.request.return_value = make_response(200)

    client.post("/api/v1/account", {"email": "a"})

    assert "Authorization" not in sent(session)["headers"]
    assert sent(session)["method"] == "POST"
