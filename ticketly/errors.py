from __future__ import annotations

import json

import httpx

from .constants import BOOTSTRAP_ROUTE_PATTERN


class ApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: object = None,
        session_expired: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        self.session_expired = session_expired


class NetworkError(ApiError):
    pass


class AuthExpiredError(ApiError):
    pass


class BootstrapAuthError(ApiError):
    pass


class RefreshFailedError(ApiError):
    def __init__(self, message: str = "Session expired. Please log in again.", **kwargs) -> None:
        kwargs.setdefault("session_expired", True)
        super().__init__(message, **kwargs)


class ValidationError(ApiError):
    pass


class PermissionDeniedError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class PayloadTooLargeError(ApiError):
    pass


_STATUS_ERRORS: dict[int, type[ApiError]] = {
    400: ValidationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    413: PayloadTooLargeError,
    422: ValidationError,
}


def is_bootstrap_route(url: httpx.URL | str) -> bool:
    path = url.path if isinstance(url, httpx.URL) else str(url)
    return BOOTSTRAP_ROUTE_PATTERN.search(path) is not None


def _response_payload(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def format_api_error(payload: object, *, status_code: int | None = None, fallback: str = "An error occurred") -> str:
    """Flatten an error body into one readable line.

    Picks up ``message``, ``error``, ``details`` and ``errors`` the way the
    backend reports them, then appends the status code.
    """
    parts: list[str] = []

    if isinstance(payload, str) and payload.strip():
        parts.append(payload.strip())
    elif isinstance(payload, dict):
        message = payload.get("message")
        if message:
            parts.append(str(message))
        error = payload.get("error")
        if error and error != message:
            parts.append(str(error))
        details = payload.get("details")
        if isinstance(details, list) and details:
            rendered = []
            for detail in details:
                if isinstance(detail, dict):
                    rendered.append(str(detail.get("message") or json.dumps(detail)))
                else:
                    rendered.append(str(detail))
            parts.append("; ".join(rendered))
        errors = payload.get("errors")
        if isinstance(errors, dict) and errors:
            parts.append("; ".join(f"{key}: {value}" for key, value in errors.items()))

    if status_code is not None:
        parts.append(f"(Status: {status_code})")

    if not parts or (len(parts) == 1 and status_code is not None):
        parts.insert(0, fallback)
    return " ".join(parts)


def raise_for_api_error(response: httpx.Response) -> None:
    status_code = response.status_code
    if status_code < 400:
        return

    payload = _response_payload(response)
    message = format_api_error(payload, status_code=status_code)

    if status_code == 401:
        if is_bootstrap_route(response.request.url):
            raise BootstrapAuthError(message, status_code=status_code, payload=payload)
        raise AuthExpiredError(message, status_code=status_code, payload=payload)

    error_cls = _STATUS_ERRORS.get(status_code, ApiError)
    raise error_cls(message, status_code=status_code, payload=payload)
