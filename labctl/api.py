"""
Authenticated client for the lab47 account service.

Every command reaches the service through ApiClient.perform, which attaches
credentials, serializes the request body, issues exactly one HTTP request and
turns the response into either a decoded model or one of the errors from
labctl.errors.
"""

import base64
import json
from typing import Any, Dict, Optional, Type, TypeVar

import pydantic as pdc
import requests

from labctl.errors import DecodeError, RemoteError, StatusError, TransportError
from labctl.logging import get_labctl_logger

LOGGER = get_labctl_logger()

DEFAULT_BASE = "https://svc.lab47.dev"
TOKEN_USER = "cytoken"
JSON_CONTENT_TYPE = "application/json"

M = TypeVar("M", bound=pdc.BaseModel)


class _ErrorEnvelope(pdc.BaseModel):
    code: int = 0
    error: str = ""


def basic_auth_header(user: str, password: str) -> str:
    """Build the value of a basic Authorization header.

    Args:
        user (str): Username, or ``cytoken`` for session-token calls
        password (str): Password or session token

    :return: Header value in the form ``Basic base64(user:password)``
    """
    raw = f"{user}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _encode_body(body: Any) -> bytes:
    if isinstance(body, pdc.BaseModel):
        payload = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        payload = body
    try:
        return json.dumps(payload).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise DecodeError(f"error marshaling request: {e}") from e


def _is_json(resp: requests.Response) -> bool:
    content_type = resp.headers.get("Content-Type", "")
    return content_type.split(";", 1)[0].strip().lower() == JSON_CONTENT_TYPE


class ApiClient:
    """
    Client for the account service rooted at a base URL.

    The client holds no credentials itself; callers pass the session token or
    the email/password pair to the wrapper they use.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def perform(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        response_model: Optional[Type[M]] = None,
    ) -> Optional[M]:
        """Issue one request against the service and decode the result.

        Args:
            method (str): HTTP method
            path (str): Path relative to the base URL, or an absolute URL
            headers (dict): Extra headers, applied last so they win over defaults
            body (Any): Value to send as JSON, either a pydantic model or plain data
            response_model (type): Pydantic model to decode a successful response into

        Raises:
            TransportError: The request could not be completed.
            RemoteError: The service returned a ``{code, error}`` envelope.
            StatusError: The service returned a non-2xx status without JSON.
            DecodeError: A body could not be encoded or decoded.

        :return: Decoded response model, or None when no model was requested
        """
        url = self.url_for(path)
        request_headers: Dict[str, str] = {}
        data = None
        if body is not None:
            data = _encode_body(body)
            request_headers["Content-Type"] = JSON_CONTENT_TYPE
        request_headers.update(headers or {})

        LOGGER.debug("%s request URL: %s", method, url)
        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                data=data,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"error calling {path}: {e}") from e

        if resp.status_code > 299:
            LOGGER.debug("%s %s failed with status %s", method, url, resp.status_code)
            if _is_json(resp):
                try:
                    envelope = _ErrorEnvelope.model_validate_json(resp.content)
                except pdc.ValidationError as e:
                    raise DecodeError(f"error decoding response: {e}") from e
                raise RemoteError(envelope.code, envelope.error)
            raise StatusError(resp.status_code)

        if response_model is None:
            return None

        try:
            return response_model.model_validate_json(resp.content)
        except pdc.ValidationError as e:
            raise DecodeError(f"error decoding response: {e}") from e

    def post(
        self, path: str, body: Any = None, response_model: Optional[Type[M]] = None
    ) -> Optional[M]:
        """Unauthenticated POST."""
        return self.perform("POST", path, None, body, response_model)

    def get(self, path: str, response_model: Optional[Type[M]] = None) -> Optional[M]:
        """Unauthenticated GET."""
        return self.perform("GET", path, None, None, response_model)

    def token_post(
        self,
        token: str,
        path: str,
        body: Any = None,
        response_model: Optional[Type[M]] = None,
    ) -> Optional[M]:
        return self.perform("POST", path, _token_headers(token), body, response_model)

    def token_put(
        self,
        token: str,
        path: str,
        body: Any = None,
        response_model: Optional[Type[M]] = None,
    ) -> Optional[M]:
        return self.perform("PUT", path, _token_headers(token), body, response_model)

    def token_get(
        self, token: str, path: str, response_model: Optional[Type[M]] = None
    ) -> Optional[M]:
        return self.perform("GET", path, _token_headers(token), None, response_model)

    def basic_get(
        self,
        user: str,
        password: str,
        path: str,
        response_model: Optional[Type[M]] = None,
    ) -> Optional[M]:
        """GET authenticated with an explicit email and password.

        Only used for the login exchange, before a session token exists.
        """
        headers = {"Authorization": basic_auth_header(user, password)}
        return self.perform("GET", path, headers, None, response_model)


def _token_headers(token: str) -> Dict[str, str]:
    return {"Authorization": basic_auth_header(TOKEN_USER, token)}
