from __future__ import annotations

from typing import Callable

import httpx

from session.models import TokenPair
from session.refresh import RefreshCoordinator
from session.token_store import TokenStore

from .errors import ApiError, raise_for_api_error
from .http import RequestDispatcher
from .toggle import Intent, MutationCoalescer


def _read_json(response: httpx.Response) -> dict:
    raise_for_api_error(response)
    try:
        payload = response.json()
    except ValueError as error:
        raise ApiError(
            "Unexpected non-JSON response from API.",
            status_code=response.status_code,
            payload=response.text,
        ) from error
    if not isinstance(payload, dict):
        raise ApiError("Unexpected API response shape.", status_code=response.status_code, payload=payload)
    return payload


def _tokens_from(payload: dict) -> TokenPair | None:
    try:
        return TokenPair.from_payload(payload)
    except ValueError:
        return None


class AuthAPI:
    def __init__(self, dispatcher: RequestDispatcher, coordinator: RefreshCoordinator) -> None:
        self._dispatcher = dispatcher
        self._coordinator = coordinator

    @property
    def token_store(self) -> TokenStore:
        return self._dispatcher.token_store

    async def signup(self, *, name: str, email: str, password: str) -> dict:
        response = await self._dispatcher.post(
            "/auth/signup",
            json={"name": name, "email": email, "password": password},
        )
        return _read_json(response)

    async def login(self, *, email: str, password: str) -> dict:
        """Start a login. Tokens are stored only when no OTP step is required."""
        response = await self._dispatcher.post(
            "/auth/login",
            json={"email": email, "password": password},
        )
        payload = _read_json(response)
        pair = _tokens_from(payload)
        if pair is not None:
            await self.token_store.set(pair)
        return payload

    async def verify_otp(self, *, otp: str, temp_token: str) -> dict:
        response = await self._dispatcher.post(
            "/auth/verify-otp",
            json={"otp": otp, "tempToken": temp_token},
        )
        payload = _read_json(response)
        pair = _tokens_from(payload)
        if pair is not None:
            await self.token_store.set(pair)
        return payload

    async def refresh_token(self) -> TokenPair | None:
        # Goes through the coordinator so it shares any refresh already running.
        await self._coordinator.recover()
        return await self.token_store.get()

    async def get_profile(self) -> dict:
        return _read_json(await self._dispatcher.get("/auth/profile"))

    async def logout(self) -> None:
        await self.token_store.clear()

    async def delete_user(self) -> dict:
        payload = _read_json(await self._dispatcher.delete("/auth/delete"))
        await self.token_store.clear()
        return payload

    async def follow_user(self, user_id: str) -> dict:
        return _read_json(await self._dispatcher.post(f"/users/{user_id}/follow"))

    async def unfollow_user(self, user_id: str) -> dict:
        return _read_json(await self._dispatcher.delete(f"/users/{user_id}/follow"))

    async def upload_profile_image(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str = "image/jpeg",
    ) -> dict:
        response = await self._dispatcher.post(
            "/auth/upload-profile-image",
            files={"profileImage": (filename, content, content_type)},
        )
        return _read_json(response)


class EventsAPI:
    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self._dispatcher = dispatcher

    async def like_event(self, event_id: str) -> dict:
        return _read_json(await self._dispatcher.post(f"/events/{event_id}/like"))

    async def unlike_event(self, event_id: str) -> dict:
        return _read_json(await self._dispatcher.post(f"/events/{event_id}/unlike"))


def like_toggle(
    events: EventsAPI,
    event_id: str,
    *,
    liked: bool = False,
    on_change: Callable[[bool], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> MutationCoalescer[dict]:
    async def perform(intent: Intent) -> dict:
        if intent is Intent.APPLY:
            return await events.like_event(event_id)
        return await events.unlike_event(event_id)

    return MutationCoalescer(perform, applied=liked, on_change=on_change, on_error=on_error)


def follow_toggle(
    auth: AuthAPI,
    user_id: str,
    *,
    following: bool = False,
    on_change: Callable[[bool], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> MutationCoalescer[dict]:
    async def perform(intent: Intent) -> dict:
        if intent is Intent.APPLY:
            return await auth.follow_user(user_id)
        return await auth.unfollow_user(user_id)

    return MutationCoalescer(perform, applied=following, on_change=on_change, on_error=on_error)
