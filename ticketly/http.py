from __future__ import annotations

import logging
from typing import Any

import httpx

from session.refresh import RefreshCoordinator
from session.token_store import TokenStore

from .constants import LOGGER
from .errors import NetworkError, is_bootstrap_route


def extract_bearer_token(authorization_header: str | None) -> str | None:
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class RefreshTransport(httpx.AsyncBaseTransport):
    """Replays a request once with a fresh access token after a 401."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        coordinator: RefreshCoordinator,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._coordinator = coordinator
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        response = await self._transport.handle_async_request(request)

        if response.status_code != 401:
            return response
        if is_bootstrap_route(request.url):
            return response

        await response.aclose()
        stale_token = extract_bearer_token(request.headers.get("authorization"))
        access_token = await self._coordinator.recover(stale_token)

        retry_request = httpx.Request(
            method=request.method,
            url=request.url,
            headers=request.headers,
            content=body,
            extensions=request.extensions,
        )
        retry_request.headers["Authorization"] = f"Bearer {access_token}"
        # The replay goes straight to the inner transport, so it is never replayed again.
        self._logger.info("Replaying %s %s with refreshed token", request.method, request.url)
        return await self._transport.handle_async_request(retry_request)

    async def aclose(self) -> None:
        await self._transport.aclose()


class RequestDispatcher:
    def __init__(self, client: httpx.AsyncClient, token_store: TokenStore) -> None:
        self._client = client
        self.token_store = token_store

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def prepare(self, request: httpx.Request) -> httpx.Request:
        pair = await self.token_store.get()
        if pair is not None:
            request.headers["Authorization"] = f"Bearer {pair.access_token}"

        has_body = int(request.headers.get("content-length", "0") or 0) > 0
        if has_body and "content-type" not in request.headers:
            request.headers["Content-Type"] = "application/json"
        return request

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json: Any = None,
        content: bytes | str | None = None,
        data: Any = None,
        files: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        request_headers = httpx.Headers(headers or {})
        if files is not None and "content-type" in request_headers:
            # httpx has to compute the multipart boundary itself.
            del request_headers["content-type"]

        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        request = self._client.build_request(
            method,
            url,
            params=params,
            json=json,
            content=content,
            data=data,
            files=files,
            headers=request_headers,
            **extra,
        )
        await self.prepare(request)

        try:
            return await self._client.send(request)
        except httpx.TimeoutException as error:
            raise NetworkError(f"Request timed out: {method.upper()} {url}") from error
        except httpx.TransportError as error:
            raise NetworkError(f"Network error: {error}") from error

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_log_hooks(*, enabled: bool) -> dict[str, list]:
    async def log_request(request: httpx.Request) -> None:
        if not enabled:
            return
        LOGGER.info("API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not enabled:
            return
        LOGGER.info(
            "API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("API error body: %s", text)

    return {"request": [log_request], "response": [log_response]}
