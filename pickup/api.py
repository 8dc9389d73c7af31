"""
BACKEND CLIENT

JSON-over-HTTPS transport and the request pipeline shared by every resource:

- bearer token on every authenticated request
- envelope unwrapping: ``{isSuccess, code, message, result}``
- one silent refresh-and-retry on 401, guarded by a per-request retry marker
- 401 on public browsing paths is reported, never turned into a logout
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from pickup.config import API_BASE_URL, GENERIC_ERROR_MESSAGE, PUBLIC_PATH_PREFIXES, REQUEST_TIMEOUT_SECONDS
from pickup.errors import ApiError, AuthenticationError, PublicAccessDenied, TransportError
from pickup.tokens import TokenStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class Transport(Protocol):
    def send(self, method: str, url: str, *, headers: dict[str, str], body: bytes | None) -> HttpResponse: ...


def _parse_json(raw: str) -> Any:
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return {"message": raw.strip()[:800]}


class UrllibTransport:
    """Blocking transport; the client runs it off the event loop."""

    def __init__(self, timeout: int = REQUEST_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def send(self, method: str, url: str, *, headers: dict[str, str], body: bytes | None) -> HttpResponse:
        req = Request(url, data=body, headers=headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
                return HttpResponse(
                    status=resp.status,
                    body=_parse_json(raw),
                    headers={k.lower(): v for k, v in resp.headers.items()},
                )
        except HTTPError as e:
            raw = ""
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                raw = ""
            return HttpResponse(
                status=e.code,
                body=_parse_json(raw),
                headers={k.lower(): v for k, v in (e.headers or {}).items()},
            )
        except URLError as e:
            raise TransportError(f"Cannot reach the server: {e.reason}") from e
        except TimeoutError as e:
            raise TransportError("The server did not respond in time.") from e
        except (http.client.HTTPException, OSError) as e:
            raise TransportError(f"The connection to the server was lost: {e}") from e


def is_public_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in PUBLIC_PATH_PREFIXES)


def error_message(body: Any, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)
    return fallback


def unwrap(body: Any) -> Any:
    """Return ``result`` from an envelope, or the body itself when it is not one."""
    if isinstance(body, dict) and "isSuccess" in body:
        if not body.get("isSuccess"):
            raise ApiError(error_message(body), code=body.get("code"))
        return body.get("result")
    return body


class ApiClient:
    def __init__(
        self,
        tokens: TokenStore,
        transport: Transport | None = None,
        base_url: str = API_BASE_URL,
        on_auth_failure: Callable[[], None] | None = None,
    ) -> None:
        self.tokens = tokens
        self.transport = transport or UrllibTransport()
        self.base_url = base_url.rstrip("/")
        self.on_auth_failure = on_auth_failure
        self._refresh_task: asyncio.Task[None] | None = None

    def _url(self, path: str, params: dict[str, Any] | None) -> str:
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    async def _send_once(
        self, method: str, path: str, params: dict[str, Any] | None, payload: Any, token: str | None
    ) -> HttpResponse:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        data = None if payload is None else json.dumps(payload, ensure_ascii=False).encode("utf-8")
        url = self._url(path, params)
        logger.debug("request method=%s path=%s", method, path)
        return await asyncio.to_thread(self.transport.send, method, url, headers=headers, body=data)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        auth: bool = True,
    ) -> HttpResponse:
        token = self.tokens.access_token if auth else None
        response = await self._send_once(method, path, params, json_body, token)
        retried = False

        while response.status == 401 and auth:
            if is_public_path(path):
                logger.info("public_path_401 path=%s", path)
                raise PublicAccessDenied(error_message(response.body), status=401)
            if retried:
                raise AuthenticationError(error_message(response.body, "Authentication required."), status=401)
            retried = True

            current = self.tokens.access_token
            if not (current and current != token):
                # Nobody refreshed while this request was in flight.
                await self._refresh_or_fail()
                current = self.tokens.access_token
            token = current
            logger.info("retry_after_401 path=%s", path)
            response = await self._send_once(method, path, params, json_body, token)

        if response.status >= 400:
            raise ApiError(
                error_message(response.body),
                status=response.status,
                code=response.body.get("code") if isinstance(response.body, dict) else None,
            )
        return response

    async def _refresh_or_fail(self) -> None:
        if not self.tokens.refresh_token:
            logger.info("refresh_skipped reason=no_refresh_token")
            self._fail_auth()
            raise AuthenticationError("Please log in again.", status=401)
        try:
            await self.refresh_tokens()
        except (ApiError, TransportError) as exc:
            logger.warning("refresh_failed error=%s", exc)
            self._fail_auth()
            raise AuthenticationError("Your session has expired. Please log in again.", status=401) from exc

    def _fail_auth(self) -> None:
        self.tokens.clear()
        if self.on_auth_failure is not None:
            self.on_auth_failure()

    async def refresh_tokens(self) -> None:
        """Exchange the refresh token; concurrent callers share one exchange."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._exchange_refresh_token())
        await self._refresh_task

    async def _exchange_refresh_token(self) -> None:
        refresh_token = self.tokens.refresh_token
        if not refresh_token:
            raise AuthenticationError("No refresh token.", status=401)
        response = await self.request(
            "POST", "/api/auth/refresh", json_body={"refreshToken": refresh_token}, auth=False
        )
        result = unwrap(response.body) or {}
        access = result.get("accessToken")
        if not access:
            raise ApiError("Refresh response carried no access token.")
        self.tokens.set(access, result.get("refreshToken"))
        logger.info("tokens_refreshed")

    # ---------------------------------------------------------
    # Verb helpers returning the unwrapped body
    # ---------------------------------------------------------

    async def get(self, path: str, params: dict[str, Any] | None = None, *, auth: bool = True) -> Any:
        return unwrap((await self.request("GET", path, params=params, auth=auth)).body)

    async def post(self, path: str, body: Any = None, *, auth: bool = True) -> Any:
        return unwrap((await self.request("POST", path, json_body=body, auth=auth)).body)

    async def put(self, path: str, body: Any = None) -> Any:
        return unwrap((await self.request("PUT", path, json_body=body)).body)

    async def patch(self, path: str, body: Any = None) -> Any:
        return unwrap((await self.request("PATCH", path, json_body=body)).body)

    async def delete(self, path: str) -> Any:
        return unwrap((await self.request("DELETE", path)).body)
