from __future__ import annotations

from typing import Callable

from ticketly.constants import LOGGER

SessionExpiredCallback = Callable[[], None]


class SessionExpiryNotifier:
    """Broadcast point fired when the session cannot be recovered.

    Subscribers decide how to react (for example by showing a login view).
    Firing with no subscribers is a no-op.
    """

    def __init__(self) -> None:
        self._subscribers: list[SessionExpiredCallback] = []

    def subscribe(self, callback: SessionExpiredCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def notify(self) -> None:
        LOGGER.warning("Session expired; notifying %s subscriber(s)", len(self._subscribers))
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                LOGGER.exception("Session expiry subscriber %r failed", callback)


SESSION_EXPIRED = SessionExpiryNotifier()
