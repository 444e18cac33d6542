"""
HTTP transport for the authorization API.

Maps responses onto the error taxonomy:

- 401/403: Unauthorized / Forbidden, the caller must re-authenticate
- 419: anti-forgery token expired; the token is refreshed, reads are retried
  once, writes raise CsrfTokenExpired so the caller decides to resubmit
- 422: ValidationFailed carrying the field errors
- 503/504, timeouts, connection errors: Unavailable
- anything else: RequestFailed

Writes are never re-sent implicitly.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote

import httpx

from app.core import config
from app.core.errors import (
    CsrfTokenExpired,
    Forbidden,
    RequestFailed,
    Unauthorized,
    Unavailable,
    ValidationFailed,
)
from app.utils import get_logger


log = get_logger(__name__)

CSRF_COOKIE = "XSRF-TOKEN"
CSRF_HEADER = "X-XSRF-TOKEN"
SESSION_EXPIRED = 419
READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class ApiTransport:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout_seconds: float | None = None,
        csrf_path: str = "/sanctum/csrf-cookie",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._csrf_path = csrf_path
        self._client = httpx.AsyncClient(
            base_url=(base_url or config.API_BASE_URL).rstrip("/"),
            timeout=config.API_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> ApiTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_token(self, token: str | None) -> None:
        self._token = token

    async def refresh_csrf_token(self) -> None:
        """Fetch a fresh anti-forgery cookie; failure is logged and left to the next request."""
        try:
            response = await self._client.get(self._csrf_path)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Failed to refresh CSRF token: %s", exc)

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        method = method.upper()
        retried = False
        while True:
            try:
                response = await self._client.request(
                    method, path, params=params, json=json, headers=self._headers()
                )
            except httpx.TimeoutException as exc:
                log.error("%s %s timed out: %s", method, path, exc)
                raise Unavailable(f"{method} {path} timed out")
            except httpx.TransportError as exc:
                log.error("%s %s failed: %s", method, path, exc)
                raise Unavailable(f"{method} {path} failed: {exc}")

            if response.status_code == SESSION_EXPIRED:
                await self.refresh_csrf_token()
                if method in READ_METHODS and not retried:
                    retried = True
                    continue
                raise CsrfTokenExpired()
            return self._handle(response)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        csrf = self._client.cookies.get(CSRF_COOKIE)
        if csrf:
            headers[CSRF_HEADER] = unquote(csrf)
        return headers

    def _handle(self, response: httpx.Response) -> Any:
        body = _json_or_none(response)
        if response.is_success:
            return body

        status = response.status_code
        message = _message_of(body)
        log.info("%s %s -> %s %s", response.request.method, response.request.url.path, status, message)

        if status == 401:
            raise Unauthorized(message) if message else Unauthorized()
        if status == 403:
            raise Forbidden(message) if message else Forbidden()
        if status == 422:
            errors = _errors_of(body)
            if errors:
                raise ValidationFailed.from_errors(errors)
            raise ValidationFailed(message) if message else ValidationFailed()
        if status in (503, 504):
            raise Unavailable(message) if message else Unavailable()
        raise RequestFailed(message or RequestFailed.message, status_code=status)


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _message_of(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    message = body.get("message") or body.get("detail")
    return message if isinstance(message, str) else None


def _errors_of(body: Any) -> dict[str, list[str]]:
    if not isinstance(body, dict) or not isinstance(body.get("errors"), dict):
        return {}
    errors: dict[str, list[str]] = {}
    for field, messages in body["errors"].items():
        if isinstance(messages, str):
            messages = [messages]
        errors[str(field)] = [str(m) for m in messages]
    return errors
