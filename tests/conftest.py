"""Shared test fixtures."""

import asyncio
import sys
import time
from pathlib import Path
import pytest

# Add src to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / 'src'))

from connpool.database import client
from connpool.exceptions import ConnectError


class FakeConnection:
    """Blocking stand-in for a backend session."""
    
    def __init__(self, number: int):
        self.number = number
        self.healthy = True
        self.closed = False
        self.health_checks = 0
        self.check_delay = 0.0
    
    def is_healthy(self) -> bool:
        self.health_checks += 1
        return self.healthy and not self.closed
    
    def close(self) -> None:
        self.closed = True


class FakeFactory:
    """
    Blocking factory that records what it opened.
    
    Set ``fail`` to refuse every connection, or ``fail_after`` to refuse
    once that many connections have been opened.
    """
    
    def __init__(self):
        self.opened = []
        self.fail = False
        self.fail_after = None
        self.delay = 0.0
    
    def open(self, endpoint, credentials):
        if self.delay:
            time.sleep(self.delay)
        if self.fail or (self.fail_after is not None and len(self.opened) >= self.fail_after):
            raise ConnectError(endpoint, 'refused')
        conn = FakeConnection(len(self.opened) + 1)
        self.opened.append(conn)
        return conn


class AsyncFakeConnection(FakeConnection):
    """Cooperative stand-in for a backend session."""
    
    async def is_healthy(self) -> bool:
        if self.check_delay:
            await asyncio.sleep(self.check_delay)
        return FakeConnection.is_healthy(self)
    
    async def close(self) -> None:
        FakeConnection.close(self)


class AsyncFakeFactory(FakeFactory):
    """Cooperative factory that records what it opened."""
    
    async def open(self, endpoint, credentials):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail or (self.fail_after is not None and len(self.opened) >= self.fail_after):
            raise OSError('connection refused')
        conn = AsyncFakeConnection(len(self.opened) + 1)
        self.opened.append(conn)
        return conn


@pytest.fixture(autouse=True)
def fresh_client():
    """Each test starts with an uninitialized client."""
    client.reset_client()
    yield
    client.reset_client()


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def async_factory():
    return AsyncFakeFactory()


@pytest.fixture
def initialized(factory, async_factory):
    """Initialize the client with the fake factories."""
    client.init_client(factory=factory, async_factory=async_factory)


@pytest.fixture
def wait_until():
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    def _wait(predicate, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()
    return _wait
