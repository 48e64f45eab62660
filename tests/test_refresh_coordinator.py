import asyncio

import pytest

from session.models import RefreshState, TokenPair
from session.refresh import RefreshCoordinator
from session.token_store import MemoryTokenStore
from ticketly.errors import RefreshFailedError


class GatedRefresh:
    def __init__(self, result: TokenPair | Exception) -> None:
        self.calls: list[str] = []
        self.release = asyncio.Event()
        self._result = result

    async def __call__(self, refresh_token: str) -> TokenPair:
        self.calls.append(refresh_token)
        await self.release.wait()
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


async def _until(predicate) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(token_store, notifier) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    tasks = [asyncio.create_task(coordinator.recover("A1")) for _ in range(3)]
    await _until(lambda: coordinator.pending_count == 2)

    assert coordinator.state is RefreshState.REFRESHING
    refresh.release.set()

    assert await asyncio.gather(*tasks) == ["A2", "A2", "A2"]
    assert refresh.calls == ["R1"]
    assert await token_store.get() == TokenPair("A2", "R2")
    assert coordinator.state is RefreshState.IDLE
    assert coordinator.pending_count == 0


@pytest.mark.asyncio
async def test_queued_callers_resume_in_arrival_order(token_store, notifier) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)
    resumed: list[int] = []

    async def caller(index: int) -> None:
        await coordinator.recover("A1")
        resumed.append(index)

    leader = asyncio.create_task(caller(0))
    await _until(lambda: refresh.calls)
    followers = [asyncio.create_task(caller(index)) for index in (1, 2, 3)]
    await _until(lambda: coordinator.pending_count == 3)

    assert resumed == []
    refresh.release.set()
    await asyncio.gather(leader, *followers)

    assert resumed[1:] == [1, 2, 3]


@pytest.mark.asyncio
async def test_refresh_failure_clears_store_and_notifies_once(
    token_store, notifier, expiry_recorder
) -> None:
    refresh = GatedRefresh(RuntimeError("invalid_grant"))
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    tasks = [asyncio.create_task(coordinator.recover("A1")) for _ in range(3)]
    await _until(lambda: coordinator.pending_count == 2)
    refresh.release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(result, RefreshFailedError) for result in results)
    assert all(result.session_expired for result in results)
    assert isinstance(results[0].__cause__, RuntimeError)
    assert await token_store.get() is None
    assert expiry_recorder.calls == 1
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_calling_endpoint(
    notifier, expiry_recorder
) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    coordinator = RefreshCoordinator(MemoryTokenStore(), refresh, notifier=notifier)

    with pytest.raises(RefreshFailedError, match="No refresh token"):
        await coordinator.recover()

    assert refresh.calls == []
    assert expiry_recorder.calls == 1
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_old_token_after_failed_refresh_does_not_expire_again(
    token_store, notifier, expiry_recorder
) -> None:
    refresh = GatedRefresh(RuntimeError("invalid_grant"))
    refresh.release.set()
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    with pytest.raises(RefreshFailedError):
        await coordinator.recover("A1")
    assert expiry_recorder.calls == 1

    with pytest.raises(RefreshFailedError) as excinfo:
        await coordinator.recover("A1")

    assert excinfo.value.session_expired
    assert refresh.calls == ["R1"]
    assert expiry_recorder.calls == 1
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_rotated_token_is_reused_without_refresh(token_store, notifier) -> None:
    refresh = GatedRefresh(TokenPair("A3", "R3"))
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    assert await coordinator.recover("A0") == "A1"
    assert refresh.calls == []


@pytest.mark.asyncio
async def test_explicit_recover_always_refreshes(token_store, notifier) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    refresh.release.set()
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    assert await coordinator.recover() == "A2"
    assert refresh.calls == ["R1"]


@pytest.mark.asyncio
async def test_cancelled_leader_releases_waiters_without_expiring(
    token_store, notifier, expiry_recorder
) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    leader = asyncio.create_task(coordinator.recover("A1"))
    follower = asyncio.create_task(coordinator.recover("A1"))
    await _until(lambda: coordinator.pending_count == 1)

    leader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await leader
    with pytest.raises(RefreshFailedError, match="cancelled"):
        await follower

    assert coordinator.state is RefreshState.IDLE
    assert await token_store.get() == TokenPair("A1", "R1")
    assert expiry_recorder.calls == 0


@pytest.mark.asyncio
async def test_next_episode_after_success_refreshes_again(token_store, notifier) -> None:
    refresh = GatedRefresh(TokenPair("A2", "R2"))
    refresh.release.set()
    coordinator = RefreshCoordinator(token_store, refresh, notifier=notifier)

    await coordinator.recover("A1")
    await coordinator.recover("A2")

    assert refresh.calls == ["R1", "R2"]
