from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from functools import partial

import httpx

from session.expiry import SESSION_EXPIRED, SessionExpiryNotifier
from session.refresh import RefreshCoordinator, request_token_refresh
from session.token_store import FileTokenStore, TokenStore
from ticketly.api import AuthAPI, EventsAPI
from ticketly.constants import DEFAULT_TOKEN_STORE_PATH, LOGGER
from ticketly.env import get_api_base_url, get_api_timeout, load_env, setup_logging, validate_env
from ticketly.errors import ApiError, RefreshFailedError
from ticketly.http import RefreshTransport, RequestDispatcher, build_log_hooks


@dataclass
class SessionContext:
    """Everything one process needs to talk to the API as a signed-in user."""

    token_store: TokenStore
    notifier: SessionExpiryNotifier
    coordinator: RefreshCoordinator
    dispatcher: RequestDispatcher
    auth: AuthAPI
    events: EventsAPI
    refresh_client: httpx.AsyncClient
    shared_transport: bool = False

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        # A transport shared by both clients was already closed with the dispatcher.
        if not self.shared_transport:
            await self.refresh_client.aclose()


def create_session(
    *,
    base_url: str | None = None,
    timeout: float | None = None,
    token_store: TokenStore | None = None,
    notifier: SessionExpiryNotifier | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    debug_enabled: bool = False,
) -> SessionContext:
    base_url = (base_url or get_api_base_url()).rstrip("/")
    timeout = get_api_timeout() if timeout is None else timeout
    token_store = token_store or FileTokenStore(
        os.getenv("TICKETLY_TOKEN_STORE_PATH", DEFAULT_TOKEN_STORE_PATH)
    )
    notifier = notifier or SESSION_EXPIRED

    # Refresh calls use their own client so they never pass through RefreshTransport.
    refresh_client = httpx.AsyncClient(
        timeout=timeout,
        transport=transport or httpx.AsyncHTTPTransport(),
    )
    coordinator = RefreshCoordinator(
        token_store,
        partial(request_token_refresh, base_url=base_url, client=refresh_client),
        notifier=notifier,
        logger=LOGGER,
    )

    client = httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=RefreshTransport(
            transport or httpx.AsyncHTTPTransport(),
            coordinator,
            logger=LOGGER,
        ),
        event_hooks=build_log_hooks(enabled=debug_enabled),
    )
    dispatcher = RequestDispatcher(client, token_store)

    return SessionContext(
        token_store=token_store,
        notifier=notifier,
        coordinator=coordinator,
        dispatcher=dispatcher,
        auth=AuthAPI(dispatcher, coordinator),
        events=EventsAPI(dispatcher),
        refresh_client=refresh_client,
        shared_transport=transport is not None,
    )


async def show_profile(session: SessionContext) -> int:
    unsubscribe = session.notifier.subscribe(lambda: print("Session expired. Please log in again."))
    try:
        profile = await session.auth.get_profile()
    except RefreshFailedError:
        return 1
    except ApiError as error:
        print(f"Request failed: {error}")
        return 1
    finally:
        unsubscribe()
        await session.aclose()

    print(json.dumps(profile, indent=2, sort_keys=True))
    return 0


def main() -> int:
    load_env()
    debug_enabled = setup_logging()
    validate_env()
    session = create_session(debug_enabled=debug_enabled)
    return asyncio.run(show_profile(session))


if __name__ == "__main__":
    raise SystemExit(main())
