"""Thread-safe connection pool."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from ..exceptions import ConnectError, PoolClosedError, PoolTimeoutError, WaitQueueFullError
from ..models.pool import Credentials, PoolSettings, PoolStats
from ..utils.deadline import Deadline
from .base import _UNSET, BasePool
from .client import default_factory, require_initialized
from .connection import ConnectionFactory, ConnectionState, PooledConnection

logger = logging.getLogger(__name__)


class _Waiter:
    """A blocked acquire. Exactly one of ``connection`` or ``error`` is set before ``event``."""
    
    __slots__ = ('event', 'connection', 'error')
    
    def __init__(self):
        self.event = threading.Event()
        self.connection: Optional[PooledConnection] = None
        self.error: Optional[Exception] = None


class ConnectionPool(BasePool):
    """
    A bounded pool of blocking backend connections shared between threads.
    
    One lock guards the idle deque, the in-use map, the opening count and
    the FIFO waiter queue. Opening, health-checking and closing connections
    always happen outside the lock. A released connection is handed straight
    to the oldest waiter, waking exactly one thread.
    
    Use ``create_pool()`` rather than constructing this directly; the
    constructor does not open any connection.
    """
    
    def __init__(self, settings: PoolSettings, factory: Optional[ConnectionFactory] = None):
        require_initialized()
        super().__init__(settings)
        self._factory = factory or default_factory()
        self._lock = threading.Lock()
        self._drained = threading.Condition(self._lock)
    
    # -- connection lifecycle ---------------------------------------------
    
    def _open_connection(self) -> PooledConnection:
        try:
            raw = self._factory.open(self.endpoint, self.settings.credentials)
        except Exception as e:
            raise self._wrap_connect_error(e) from e
        conn = self._wrap(raw)
        logger.debug("Opened connection %s to %s", conn.id, self.endpoint)
        return conn
    
    def _is_healthy(self, conn: PooledConnection) -> bool:
        try:
            return bool(conn.raw.is_healthy())
        except Exception as e:
            logger.warning("Health check failed for connection %s: %s", conn.id, e)
            return False
    
    def _destroy(self, conn: PooledConnection) -> None:
        conn.state = ConnectionState.CLOSED
        conn.alive = False
        try:
            conn.raw.close()
        except Exception as e:
            logger.warning("Error closing connection %s: %s", conn.id, e)
        with self._lock:
            self._destroyed_total += 1
        logger.debug("Destroyed connection %s", conn.id)
    
    def _hand_off_locked(self, conn: PooledConnection) -> None:
        if self._waiters:
            waiter = self._waiters.popleft()
            self._checkout_locked(conn)
            waiter.connection = conn
            waiter.event.set()
        else:
            conn.state = ConnectionState.IDLE
            self._idle.append(conn)
    
    def _warm_up(self) -> None:
        opened: List[PooledConnection] = []
        try:
            for _ in range(self.min_size):
                opened.append(self._open_connection())
        except ConnectError:
            with self._lock:
                self._closed = True
            for conn in opened:
                self._destroy(conn)
            raise
        with self._lock:
            self._opened_total += len(opened)
            self._idle.extend(opened)
        logger.info(
            "Pool for %s ready with %d connection(s) (max %d)",
            self.endpoint, len(opened), self.max_size,
        )
    
    def _spawn_fill(self, count: int) -> None:
        thread = threading.Thread(
            target=self._fill, args=(count,), name='connpool-fill', daemon=True
        )
        thread.start()
    
    def _fill(self, count: int) -> None:
        """Open ``count`` reserved connections in the background."""
        for i in range(count):
            try:
                conn = self._open_connection()
            except ConnectError as e:
                logger.warning("Could not open replacement connection: %s", e)
                with self._lock:
                    self._opening -= count - i
                    # The oldest waiter gets the failure instead of a silent timeout.
                    if self._waiters:
                        waiter = self._waiters.popleft()
                        waiter.error = e
                        waiter.event.set()
                    self._drained.notify_all()
                return
            with self._lock:
                self._opening -= 1
                self._opened_total += 1
                late = self._closed
                if not late:
                    conn.touch()
                    self._hand_off_locked(conn)
                self._drained.notify_all()
            if late:
                self._destroy(conn)
    
    def _grow(self, count: int) -> PooledConnection:
        """
        Open one of ``count`` reserved connections for the calling thread.
        
        The rest of the reservation is opened on a fill thread, so the
        caller only waits for its own connect.
        """
        try:
            conn = self._open_connection()
        except ConnectError:
            with self._lock:
                self._opening -= count
                self._drained.notify_all()
                closed = self._closed
                spawn = self._reserve_fill_locked()
            if spawn:
                self._spawn_fill(spawn)
            if closed:
                raise PoolClosedError()
            raise
        with self._lock:
            self._opening -= 1
            self._opened_total += 1
            late = self._closed
            if late:
                self._opening -= count - 1
            else:
                self._checkout_locked(conn)
            self._drained.notify_all()
        if late:
            self._destroy(conn)
            raise PoolClosedError()
        if count > 1:
            self._spawn_fill(count - 1)
        return conn
    
    def _discard(self, conn: PooledConnection) -> None:
        """Destroy a checked-out connection and top the pool back up."""
        with self._lock:
            self._in_use.pop(conn.id, None)
            spawn = self._reserve_fill_locked()
            self._drained.notify_all()
        self._destroy(conn)
        if spawn:
            self._spawn_fill(spawn)
    
    # -- public API -------------------------------------------------------
    
    def _checkout(self, deadline: Deadline) -> PooledConnection:
        waiter = None
        spawn = 0
        with self._lock:
            if self._closed:
                raise PoolClosedError()
            if self._idle and not self._waiters:
                conn = self._idle.pop()
                self._checkout_locked(conn)
                return conn
            grow = self._reserve_growth_locked()
            if not grow:
                if deadline.expired():
                    raise PoolTimeoutError(deadline.timeout)
                max_waiters = self.settings.max_waiters
                if max_waiters is not None and len(self._waiters) >= max_waiters:
                    raise WaitQueueFullError(max_waiters)
                waiter = _Waiter()
                self._waiters.append(waiter)
                spawn = self._reserve_fill_locked()
        if grow:
            return self._grow(grow)
        if spawn:
            self._spawn_fill(spawn)
        
        if not waiter.event.wait(deadline.remaining()):
            with self._lock:
                if not waiter.event.is_set():
                    self._waiters.remove(waiter)
                    raise PoolTimeoutError(deadline.timeout)
        if waiter.error is not None:
            raise waiter.error
        return waiter.connection
    
    def acquire(self, timeout: Optional[float] = _UNSET) -> PooledConnection:
        """
        Check a connection out of the pool.
        
        Args:
            timeout: Seconds to wait when the pool is at capacity. ``0``
                fails at once, ``None`` waits forever. Defaults to
                ``settings.wait_timeout``.
        
        Returns:
            A connection owned by the caller until ``release()``
        
        Raises:
            PoolTimeoutError: If nothing became available in time
            PoolClosedError: If the pool is or becomes closed
            ConnectError: If the pool grew on the caller's behalf and the
                backend could not be reached
        """
        if timeout is _UNSET:
            timeout = self.settings.wait_timeout
        deadline = Deadline(timeout)
        while True:
            conn = self._checkout(deadline)
            if self._needs_ping(conn) and not self._is_healthy(conn):
                logger.warning("Discarding stale connection %s on acquire", conn.id)
                self._discard(conn)
                continue
            conn.touch()
            return conn
    
    def release(self, conn: PooledConnection) -> None:
        """
        Return a connection to the pool.
        
        The connection is health-checked first; an unhealthy one is destroyed
        and replaced in the background when the pool drops below
        ``min_size``. Set ``conn.alive = False`` before releasing to have it
        destroyed without a check.
        
        Raises:
            InvalidStateError: If ``conn`` is foreign or already released
        """
        with self._lock:
            if not self._begin_release_locked(conn):
                logger.info("Connection %s was closed with the pool", conn.id)
                return
            closing = self._closed
        
        healthy = not closing and conn.alive and self._is_healthy(conn)
        
        spawn = 0
        with self._lock:
            if self._in_use.pop(conn.id, None) is None:
                # close() gave up waiting and already destroyed it
                self._force_closed.discard(conn.id)
                return
            keep = healthy and not self._closed
            if keep:
                conn.touch()
                self._hand_off_locked(conn)
            else:
                spawn = self._reserve_fill_locked()
            self._drained.notify_all()
        
        if not keep:
            if not closing:
                logger.warning("Discarding unhealthy connection %s", conn.id)
            self._destroy(conn)
        if spawn:
            self._spawn_fill(spawn)
    
    @contextmanager
    def connection(self, timeout: Optional[float] = _UNSET) -> Iterator[PooledConnection]:
        """Acquire a connection for the duration of a ``with`` block."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)
    
    def reap_idle(self, max_idle: float) -> int:
        """Destroy idle connections unused for ``max_idle`` seconds, keeping ``min_size``."""
        with self._lock:
            if self._closed:
                return 0
            victims = self._take_reapable_locked(max_idle)
        for conn in victims:
            self._destroy(conn)
        if victims:
            logger.info("Reaped %d idle connection(s)", len(victims))
        return len(victims)
    
    def stats(self) -> PoolStats:
        with self._lock:
            return self._stats_locked()
    
    def close(self, grace_period: Optional[float] = _UNSET) -> None:
        """
        Close the pool. Safe to call more than once.
        
        Waiters fail with PoolClosedError and idle connections are destroyed
        at once. Checked-out connections get ``grace_period`` seconds to come
        back before they are closed underneath their holders.
        """
        if grace_period is _UNSET:
            grace_period = self.settings.close_grace_period
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for waiter in self._waiters:
                waiter.error = PoolClosedError()
                waiter.event.set()
            self._waiters.clear()
            idle = list(self._idle)
            self._idle.clear()
        
        for conn in idle:
            self._destroy(conn)
        
        with self._lock:
            self._drained.wait_for(
                lambda: not self._in_use and not self._opening, timeout=grace_period
            )
            leftovers = self._take_force_closed_locked()
        
        for conn in leftovers:
            logger.warning("Force-closing connection %s still in use", conn.id)
            self._destroy(conn)
        logger.info("Pool for %s closed", self.endpoint)
    
    def __enter__(self) -> 'ConnectionPool':
        return self
    
    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_pool(
    min_size: int,
    max_size: int,
    increment: int,
    endpoint: str,
    credentials: Optional[Credentials] = None,
    factory: Optional[ConnectionFactory] = None,
    **options,
) -> ConnectionPool:
    """
    Create a threaded pool and open its ``min_size`` connections.
    
    If any initial connection fails, those already opened are closed and
    the error is raised; no half-built pool is returned.
    
    Args:
        min_size: Connections opened up front and kept through health failures
        max_size: Hard bound on open connections
        increment: Connections opened per growth step
        endpoint: Backend address passed to the factory
        credentials: Passed to the factory unchanged
        factory: Overrides the factory registered with ``init_client()``
        **options: Other ``PoolSettings`` fields
    
    Raises:
        ClientNotInitializedError: If ``init_client()`` has not run
        ConfigError: If the bounds are invalid
        ConnectError: If an initial connection cannot be opened
    """
    require_initialized()
    settings = PoolSettings.build(
        min_size=min_size,
        max_size=max_size,
        increment=increment,
        endpoint=endpoint,
        credentials=credentials,
        **options,
    )
    pool = ConnectionPool(settings, factory)
    pool._warm_up()
    return pool
