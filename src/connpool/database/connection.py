"""Backend connection protocols and the pooled connection wrapper."""

import itertools
import time
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from ..models.pool import Credentials


@runtime_checkable
class Connection(Protocol):
    """A blocking backend session."""
    
    def close(self) -> None: ...
    
    def is_healthy(self) -> bool: ...


@runtime_checkable
class ConnectionFactory(Protocol):
    """Opens blocking backend sessions. ``open`` raises ConnectError on failure."""
    
    def open(self, endpoint: str, credentials: Optional[Credentials]) -> Connection: ...


@runtime_checkable
class AsyncConnection(Protocol):
    """A cooperative backend session."""
    
    async def close(self) -> None: ...
    
    async def is_healthy(self) -> bool: ...


@runtime_checkable
class AsyncConnectionFactory(Protocol):
    """Opens cooperative backend sessions."""
    
    async def open(self, endpoint: str, credentials: Optional[Credentials]) -> AsyncConnection: ...


class ConnectionState(str, Enum):
    IDLE = 'idle'
    IN_USE = 'in_use'
    RETURNING = 'returning'  # released, health check in progress
    CLOSED = 'closed'


_connection_ids = itertools.count(1)


class PooledConnection:
    """
    A backend session owned by a pool.
    
    Attribute access falls through to the underlying session, so
    ``conn.fetchval(...)`` works on an asyncpg-backed connection.
    
    Args:
        raw: The session returned by the factory
        pool: The pool that opened it
    """
    
    def __init__(self, raw: Any, pool: Any):
        self.id = next(_connection_ids)
        self.raw = raw
        self.pool = pool
        self.state = ConnectionState.IDLE
        self.alive = True
        self.created_at = time.monotonic()
        self.last_used = self.created_at
    
    @property
    def in_use(self) -> bool:
        return self.state in (ConnectionState.IN_USE, ConnectionState.RETURNING)
    
    def idle_for(self, now: Optional[float] = None) -> float:
        """Seconds since the connection was last handed out or returned."""
        return (now if now is not None else time.monotonic()) - self.last_used
    
    def touch(self) -> None:
        self.last_used = time.monotonic()
    
    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes not defined on the wrapper.
        if name == 'raw':
            raise AttributeError(name)
        return getattr(self.raw, name)
    
    def __repr__(self) -> str:
        return f"<PooledConnection id={self.id} state={self.state.value}>"
