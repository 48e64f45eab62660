from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

import httpx

from session.expiry import SESSION_EXPIRED, SessionExpiryNotifier
from session.models import RefreshState, TokenPair
from session.token_store import TokenStore
from ticketly.constants import LOGGER, REFRESH_TOKEN_PATH
from ticketly.errors import RefreshFailedError, format_api_error

RefreshFn = Callable[[str], Awaitable[TokenPair]]


class _SessionAlreadyEnded(RefreshFailedError):
    """A 401 for a token that belonged to a session which has since been cleared."""


def parse_refresh_payload(payload: object) -> TokenPair:
    if not isinstance(payload, dict):
        raise RefreshFailedError("Invalid refresh response.")

    # The backend has returned the pair both at the top level and under "data".
    candidates = [payload]
    if isinstance(payload.get("data"), dict):
        candidates.append(payload["data"])

    for candidate in candidates:
        try:
            return TokenPair.from_payload(candidate)
        except ValueError:
            continue
    raise RefreshFailedError("Invalid refresh response.", payload=payload)


async def request_token_refresh(
    refresh_token: str,
    *,
    base_url: str,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    own_client = client is None
    http_client = client or httpx.AsyncClient()
    url = f"{base_url.rstrip('/')}{REFRESH_TOKEN_PATH}"

    try:
        response = await http_client.post(url, json={"refreshToken": refresh_token})
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as error:
        try:
            detail = error.response.json()
        except ValueError:
            detail = error.response.text
        raise RefreshFailedError(
            format_api_error(detail, status_code=error.response.status_code, fallback="Token refresh failed"),
            status_code=error.response.status_code,
            payload=detail,
        ) from error
    except httpx.TransportError as error:
        raise RefreshFailedError(f"Token refresh request failed: {error}") from error
    except ValueError as error:
        raise RefreshFailedError("Invalid refresh response.") from error
    finally:
        if own_client:
            await http_client.aclose()

    return parse_refresh_payload(payload)


class RefreshCoordinator:
    """Single-flight access token refresh shared by every request in a process.

    The first caller that needs a new access token performs the refresh;
    callers arriving while it runs wait on a future and receive the same
    token (or the same failure) in the order they arrived.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresh_fn: RefreshFn,
        *,
        notifier: SessionExpiryNotifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.token_store = token_store
        self._refresh_fn = refresh_fn
        self._notifier = notifier or SESSION_EXPIRED
        self._logger = logger or LOGGER
        self._state = RefreshState.IDLE
        self._pending: deque[asyncio.Future[str]] = deque()

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def recover(self, stale_access_token: str | None = None) -> str:
        """Return an access token to replay a request that failed with 401.

        ``stale_access_token`` is the token the failed request carried. When
        the store already holds a different one, that token is returned
        without calling the refresh endpoint.
        """
        if self._state is RefreshState.REFRESHING:
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._pending.append(future)
            self._logger.debug("Refresh in flight; queued request (%s waiting)", len(self._pending))
            return await future

        self._state = RefreshState.REFRESHING
        try:
            pair = await self._refresh_pair(stale_access_token)
        except asyncio.CancelledError:
            self._settle(error=RefreshFailedError("Token refresh was cancelled.", session_expired=False))
            raise
        except _SessionAlreadyEnded as failure:
            self._logger.info("Session already ended; rejecting request sent with an old token")
            self._settle(error=failure)
            raise
        except RefreshFailedError as failure:
            await self._expire_session(failure)
            raise
        except Exception as error:
            failure = RefreshFailedError(f"Token refresh failed: {error}")
            await self._expire_session(failure)
            raise failure from error

        self._settle(access_token=pair.access_token)
        return pair.access_token

    async def _refresh_pair(self, stale_access_token: str | None) -> TokenPair:
        current = await self.token_store.get()
        if current is None:
            if stale_access_token is not None:
                raise _SessionAlreadyEnded()
            raise RefreshFailedError("No refresh token available.")

        if stale_access_token is not None and current.access_token != stale_access_token:
            self._logger.info("Access token already rotated; replaying with stored token")
            return current

        self._logger.info("Refreshing access token")
        pair = await self._refresh_fn(current.refresh_token)
        await self.token_store.set(pair)
        self._logger.info("Access token refreshed; releasing %s queued request(s)", len(self._pending))
        return pair

    async def _expire_session(self, failure: RefreshFailedError) -> None:
        self._logger.warning("Token refresh failed: %s", failure)
        try:
            await self.token_store.clear()
        finally:
            self._settle(error=failure)
            self._notifier.notify()

    def _settle(self, *, access_token: str | None = None, error: BaseException | None = None) -> None:
        self._state = RefreshState.IDLE
        pending, self._pending = self._pending, deque()
        for future in pending:
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(access_token)
