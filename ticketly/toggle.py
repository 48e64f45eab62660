from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Generic, TypeVar

from .constants import LOGGER

ResultT = TypeVar("ResultT")


class Intent(enum.Enum):
    APPLY = "apply"
    REVERT = "revert"

    @classmethod
    def for_state(cls, applied: bool) -> "Intent":
        return cls.APPLY if applied else cls.REVERT


class MutationCoalescer(Generic[ResultT]):
    """Optimistic toggle that keeps at most one call in flight.

    ``trigger`` flips the local state right away. While a call is running,
    further triggers only overwrite the queued intent, so the calls actually
    issued always end with the user's latest intent.

    When a call fails and nothing is queued behind it, the local state is
    rolled back to the last state the server confirmed and ``on_error`` is
    called. Failed calls are never retried.
    """

    def __init__(
        self,
        perform: Callable[[Intent], Awaitable[ResultT]],
        *,
        applied: bool = False,
        on_change: Callable[[bool], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._perform = perform
        self._applied = applied
        self._confirmed = applied
        self._on_change = on_change
        self._on_error = on_error
        self._logger = logger or LOGGER
        self._in_flight = False
        self._queued_intent: Intent | None = None
        self._task: asyncio.Task[None] | None = None
        self.last_result: ResultT | None = None

    @property
    def applied(self) -> bool:
        return self._applied

    @property
    def confirmed(self) -> bool:
        return self._confirmed

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def queued_intent(self) -> Intent | None:
        return self._queued_intent

    def trigger(self) -> Intent:
        self._set_applied(not self._applied)
        intent = Intent.for_state(self._applied)

        if self._in_flight:
            self._queued_intent = intent
            return intent

        self._in_flight = True
        self._task = asyncio.get_running_loop().create_task(self._drive(intent))
        return intent

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await self._task

    async def _drive(self, intent: Intent) -> None:
        next_intent: Intent | None = intent
        try:
            while next_intent is not None:
                failure = await self._issue(next_intent)
                if failure is not None and self._queued_intent is None:
                    # Callbacks fired by the rollback may trigger again; the loop picks that up.
                    self._rollback(failure)
                next_intent, self._queued_intent = self._queued_intent, None
        finally:
            self._in_flight = False

    async def _issue(self, intent: Intent) -> Exception | None:
        try:
            self.last_result = await self._perform(intent)
        except Exception as error:
            self._logger.warning("Toggle call %s failed: %s", intent.value, error)
            return error
        self._confirmed = intent is Intent.APPLY
        return None

    def _rollback(self, error: Exception) -> None:
        if self._applied != self._confirmed:
            self._set_applied(self._confirmed)
        if self._on_error is not None:
            self._on_error(error)

    def _set_applied(self, applied: bool) -> None:
        self._applied = applied
        if self._on_change is not None:
            self._on_change(applied)
