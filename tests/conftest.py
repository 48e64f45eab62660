import httpx
import pytest

from client import create_session
from session.expiry import SessionExpiryNotifier
from session.models import TokenPair
from session.token_store import MemoryTokenStore

API_BASE_URL = "https://api.ticketly.test/api"


class ExpiryRecorder:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore(TokenPair("A1", "R1"))


@pytest.fixture
def notifier() -> SessionExpiryNotifier:
    return SessionExpiryNotifier()


@pytest.fixture
def expiry_recorder(notifier) -> ExpiryRecorder:
    recorder = ExpiryRecorder()
    notifier.subscribe(recorder)
    return recorder


@pytest.fixture
def build_session(token_store, notifier):
    def _build(handler, **kwargs):
        kwargs.setdefault("token_store", token_store)
        return create_session(
            base_url=API_BASE_URL,
            timeout=5.0,
            notifier=notifier,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _build
