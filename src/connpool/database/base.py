"""Bookkeeping shared by the threaded and cooperative pools."""

import time
from collections import deque
from typing import Any, Deque, Dict, List, Set

from ..exceptions import ConnectError, InvalidStateError
from ..models.pool import PoolSettings, PoolStats
from .connection import ConnectionState, PooledConnection

_UNSET: Any = object()


class BasePool:
    """
    Sizing state and invariants common to both pool backends.
    
    Nothing here blocks or does I/O. Methods ending in ``_locked`` mutate
    shared state and must run inside the subclass's critical section (the
    pool lock for threads, a single event-loop step for asyncio).
    
    Idle connections are kept LIFO: the most recently returned one is
    handed out first, so rarely needed connections age and become
    candidates for ``reap_idle``.
    """
    
    def __init__(self, settings: PoolSettings):
        self.settings = settings
        self._idle: Deque[PooledConnection] = deque()
        self._in_use: Dict[int, PooledConnection] = {}
        self._waiters: Deque[Any] = deque()
        self._force_closed: Set[int] = set()
        self._opening = 0
        self._closed = False
        self._opened_total = 0
        self._destroyed_total = 0
    
    @property
    def min_size(self) -> int:
        return self.settings.min_size
    
    @property
    def max_size(self) -> int:
        return self.settings.max_size
    
    @property
    def increment(self) -> int:
        return self.settings.increment
    
    @property
    def endpoint(self) -> str:
        return self.settings.endpoint
    
    @property
    def idle_count(self) -> int:
        return len(self._idle)
    
    @property
    def in_use_count(self) -> int:
        return len(self._in_use)
    
    @property
    def size(self) -> int:
        """Idle plus in-use connections."""
        return len(self._idle) + len(self._in_use)
    
    @property
    def closed(self) -> bool:
        return self._closed
    
    def _total_locked(self) -> int:
        # Connections being opened count toward max_size.
        return len(self._idle) + len(self._in_use) + self._opening
    
    def _wrap(self, raw: Any) -> PooledConnection:
        return PooledConnection(raw, self)
    
    def _wrap_connect_error(self, error: Exception) -> ConnectError:
        if isinstance(error, ConnectError):
            return error
        return ConnectError(self.endpoint, f"{type(error).__name__}: {error}")
    
    def _checkout_locked(self, conn: PooledConnection) -> None:
        conn.state = ConnectionState.IN_USE
        self._in_use[conn.id] = conn
    
    def _reserve_growth_locked(self) -> int:
        """Reserve slots for a caller that found nothing idle. Returns 0 at capacity."""
        room = self.max_size - self._total_locked()
        if room <= 0 or self._waiters:
            return 0
        n = min(self.increment, room)
        self._opening += n
        return n
    
    def _reserve_fill_locked(self) -> int:
        """
        Reserve slots needed to get back to ``min_size`` or to serve waiters.
        
        Returns the number of connections the caller must now open in the
        background.
        """
        if self._closed:
            return 0
        total = self._total_locked()
        room = self.max_size - total
        wanted = max(self.min_size - total, len(self._waiters) - self._opening)
        if room <= 0 or wanted <= 0:
            return 0
        n = min(room, max(wanted, self.increment))
        self._opening += n
        return n
    
    def _needs_ping(self, conn: PooledConnection) -> bool:
        interval = self.settings.ping_interval
        if not conn.alive:
            return True
        if interval < 0:
            return False
        return conn.idle_for() >= interval
    
    def _begin_release_locked(self, conn: Any) -> bool:
        """
        Validate a release and mark the connection as returning.
        
        Returns False when the connection was already force-closed by
        ``close()`` and there is nothing left to do.
        """
        if not isinstance(conn, PooledConnection) or conn.pool is not self:
            raise InvalidStateError("Connection does not belong to this pool")
        if conn.id in self._force_closed:
            self._force_closed.discard(conn.id)
            return False
        if conn.state is not ConnectionState.IN_USE or self._in_use.get(conn.id) is not conn:
            raise InvalidStateError(
                f"Connection {conn.id} is not checked out (state: {conn.state.value})"
            )
        conn.state = ConnectionState.RETURNING
        return True
    
    def _take_reapable_locked(self, max_idle: float) -> List[PooledConnection]:
        now = time.monotonic()
        surplus = self._total_locked() - self.min_size
        victims = []
        keep: Deque[PooledConnection] = deque()
        # Oldest returns sit at the left end.
        for conn in self._idle:
            if surplus > 0 and conn.idle_for(now) >= max_idle:
                victims.append(conn)
                surplus -= 1
            else:
                keep.append(conn)
        self._idle = keep
        return victims
    
    def _take_force_closed_locked(self) -> List[PooledConnection]:
        leftovers = list(self._in_use.values())
        self._in_use.clear()
        for conn in leftovers:
            self._force_closed.add(conn.id)
        return leftovers
    
    def _stats_locked(self) -> PoolStats:
        return PoolStats(
            min_size=self.min_size,
            max_size=self.max_size,
            increment=self.increment,
            idle=len(self._idle),
            in_use=len(self._in_use),
            opening=self._opening,
            waiters=len(self._waiters),
            opened_total=self._opened_total,
            destroyed_total=self._destroyed_total,
            closed=self._closed,
        )
    
    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} endpoint={self.endpoint!r} "
            f"idle={self.idle_count} in_use={self.in_use_count} "
            f"max={self.max_size} closed={self._closed}>"
        )
