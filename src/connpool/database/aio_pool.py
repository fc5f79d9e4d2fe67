"""Cooperative (asyncio) connection pool."""

import asyncio
import logging
from typing import List, Optional, Set

from ..exceptions import ConnectError, PoolClosedError, PoolTimeoutError, WaitQueueFullError
from ..models.pool import Credentials, PoolSettings, PoolStats
from ..utils.deadline import Deadline
from .base import _UNSET, BasePool
from .client import default_async_factory, require_initialized
from .connection import AsyncConnectionFactory, ConnectionState, PooledConnection

logger = logging.getLogger(__name__)


class _AcquireContext:
    """Result of ``AsyncConnectionPool.acquire()``: awaitable and an async context manager."""
    
    __slots__ = ('pool', 'timeout', 'conn')
    
    def __init__(self, pool: 'AsyncConnectionPool', timeout):
        self.pool = pool
        self.timeout = timeout
        self.conn: Optional[PooledConnection] = None
    
    def __await__(self):
        return self.pool._acquire(self.timeout).__await__()
    
    async def __aenter__(self) -> PooledConnection:
        self.conn = await self.pool._acquire(self.timeout)
        return self.conn
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        conn, self.conn = self.conn, None
        await self.pool.release(conn)


class AsyncConnectionPool(BasePool):
    """
    A bounded pool of cooperative backend connections.
    
    Same contract as ``ConnectionPool``. The event loop provides mutual
    exclusion: bookkeeping never spans an ``await``, and every network call
    (open, health check, close) happens between bookkeeping steps. Each
    waiter is a future; a released connection resolves the oldest one.
    
    Usage:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    """
    
    def __init__(self, settings: PoolSettings, factory: Optional[AsyncConnectionFactory] = None):
        require_initialized()
        super().__init__(settings)
        self._factory = factory or default_async_factory()
        self._tasks: Set[asyncio.Task] = set()
        self._drained: Optional[asyncio.Event] = None
    
    # -- connection lifecycle ---------------------------------------------
    
    async def _open_connection(self) -> PooledConnection:
        try:
            raw = await self._factory.open(self.endpoint, self.settings.credentials)
        except Exception as e:
            raise self._wrap_connect_error(e) from e
        conn = self._wrap(raw)
        logger.debug("Opened connection %s to %s", conn.id, self.endpoint)
        return conn
    
    async def _is_healthy(self, conn: PooledConnection) -> bool:
        try:
            return bool(await conn.raw.is_healthy())
        except Exception as e:
            logger.warning("Health check failed for connection %s: %s", conn.id, e)
            return False
    
    async def _destroy(self, conn: PooledConnection) -> None:
        conn.state = ConnectionState.CLOSED
        conn.alive = False
        self._destroyed_total += 1
        try:
            await conn.raw.close()
        except Exception as e:
            logger.warning("Error closing connection %s: %s", conn.id, e)
        logger.debug("Destroyed connection %s", conn.id)
    
    def _hand_off(self, conn: PooledConnection) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._checkout_locked(conn)
            waiter.set_result(conn)
            return
        conn.state = ConnectionState.IDLE
        self._idle.append(conn)
    
    def _notify_drained(self) -> None:
        if self._drained is not None and not self._in_use and not self._opening:
            self._drained.set()
    
    async def _warm_up(self) -> None:
        opened: List[PooledConnection] = []
        try:
            for _ in range(self.min_size):
                opened.append(await self._open_connection())
        except ConnectError:
            self._closed = True
            for conn in opened:
                await self._destroy(conn)
            raise
        self._opened_total += len(opened)
        self._idle.extend(opened)
        logger.info(
            "Pool for %s ready with %d connection(s) (max %d)",
            self.endpoint, len(opened), self.max_size,
        )
    
    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
    
    def _spawn_fill(self, count: int) -> None:
        self._spawn(self._fill(count))
    
    async def _fill(self, count: int) -> None:
        """Open ``count`` reserved connections in the background."""
        for i in range(count):
            try:
                conn = await self._open_connection()
            except ConnectError as e:
                logger.warning("Could not open replacement connection: %s", e)
                self._opening -= count - i
                while self._waiters:
                    waiter = self._waiters.popleft()
                    if not waiter.done():
                        waiter.set_exception(e)
                        break
                self._notify_drained()
                return
            except asyncio.CancelledError:
                self._opening -= count - i
                self._notify_drained()
                raise
            self._opening -= 1
            self._opened_total += 1
            if self._closed:
                self._notify_drained()
                await self._destroy(conn)
            else:
                conn.touch()
                self._hand_off(conn)
    
    async def _grow(self, count: int) -> PooledConnection:
        """
        Open one of ``count`` reserved connections for the caller.
        
        The remaining reservations are opened in the background so the
        caller waits for a single connect.
        """
        try:
            conn = await self._open_connection()
        except ConnectError:
            self._opening -= count
            self._notify_drained()
            if self._closed:
                raise PoolClosedError()
            spawn = self._reserve_fill_locked()
            if spawn:
                self._spawn_fill(spawn)
            raise
        except asyncio.CancelledError:
            self._opening -= count
            spawn = self._reserve_fill_locked()
            if spawn:
                self._spawn_fill(spawn)
            self._notify_drained()
            raise
        self._opening -= 1
        self._opened_total += 1
        if self._closed:
            self._opening -= count - 1
            self._notify_drained()
            await self._destroy(conn)
            raise PoolClosedError()
        self._checkout_locked(conn)
        if count > 1:
            self._spawn_fill(count - 1)
        return conn
    
    async def _discard(self, conn: PooledConnection) -> None:
        self._in_use.pop(conn.id, None)
        spawn = self._reserve_fill_locked()
        self._notify_drained()
        await self._destroy(conn)
        if spawn:
            self._spawn_fill(spawn)
    
    def _discard_soon(self, conn: PooledConnection) -> None:
        """Drop a checked-out connection now and close it in the background."""
        if self._in_use.pop(conn.id, None) is None:
            self._force_closed.discard(conn.id)
            return
        conn.state = ConnectionState.CLOSED
        spawn = self._reserve_fill_locked()
        self._notify_drained()
        self._spawn(self._destroy(conn))
        if spawn:
            self._spawn_fill(spawn)
    
    def _give_back(self, conn: PooledConnection) -> None:
        """Return a connection its caller never got to use."""
        if self._closed:
            self._discard_soon(conn)
            return
        self._in_use.pop(conn.id, None)
        self._hand_off(conn)
    
    def _abandon(self, waiter: asyncio.Future) -> None:
        """Drop a waiter whose caller was cancelled, returning anything handed to it."""
        if not waiter.done():
            self._waiters.remove(waiter)
            waiter.cancel()
        elif not waiter.cancelled() and waiter.exception() is None:
            self._give_back(waiter.result())
    
    # -- public API -------------------------------------------------------
    
    async def _checkout(self, deadline: Deadline) -> PooledConnection:
        if self._closed:
            raise PoolClosedError()
        if self._idle and not self._waiters:
            conn = self._idle.pop()
            self._checkout_locked(conn)
            return conn
        grow = self._reserve_growth_locked()
        if grow:
            return await self._grow(grow)
        
        if deadline.expired():
            raise PoolTimeoutError(deadline.timeout)
        max_waiters = self.settings.max_waiters
        if max_waiters is not None and len(self._waiters) >= max_waiters:
            raise WaitQueueFullError(max_waiters)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        spawn = self._reserve_fill_locked()
        if spawn:
            self._spawn_fill(spawn)
        
        try:
            async with asyncio.timeout(deadline.remaining()):
                await asyncio.shield(waiter)
        except TimeoutError:
            pass
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise
        if not waiter.done():
            self._waiters.remove(waiter)
            waiter.cancel()
            raise PoolTimeoutError(deadline.timeout)
        return waiter.result()
    
    async def _acquire(self, timeout) -> PooledConnection:
        if timeout is _UNSET:
            timeout = self.settings.wait_timeout
        deadline = Deadline(timeout)
        while True:
            conn = await self._checkout(deadline)
            if self._needs_ping(conn):
                try:
                    healthy = await self._is_healthy(conn)
                except asyncio.CancelledError:
                    self._give_back(conn)
                    raise
                if not healthy:
                    logger.warning("Discarding stale connection %s on acquire", conn.id)
                    await self._discard(conn)
                    continue
            conn.touch()
            return conn
    
    def acquire(self, timeout: Optional[float] = _UNSET) -> _AcquireContext:
        """
        Check a connection out of the pool.
        
        Await the result for a bare connection, or use it with ``async with``
        to have the connection released on exit.
        
        Args:
            timeout: Seconds to wait when the pool is at capacity. ``0``
                fails at once, ``None`` waits forever. Defaults to
                ``settings.wait_timeout``.
        
        Raises:
            PoolTimeoutError: If nothing became available in time
            PoolClosedError: If the pool is or becomes closed
            ConnectError: If growing the pool for this caller failed
        """
        return _AcquireContext(self, timeout)
    
    connection = acquire
    
    async def release(self, conn: PooledConnection) -> None:
        """
        Return a connection to the pool after a health check.
        
        Raises:
            InvalidStateError: If ``conn`` is foreign or already released
        """
        if not self._begin_release_locked(conn):
            logger.info("Connection %s was closed with the pool", conn.id)
            return
        closing = self._closed
        
        try:
            healthy = not closing and conn.alive and await self._is_healthy(conn)
        except asyncio.CancelledError:
            self._discard_soon(conn)
            raise
        
        if self._in_use.pop(conn.id, None) is None:
            # close() gave up waiting and already destroyed it
            self._force_closed.discard(conn.id)
            return
        spawn = 0
        keep = healthy and not self._closed
        if keep:
            conn.touch()
            self._hand_off(conn)
        else:
            spawn = self._reserve_fill_locked()
        self._notify_drained()
        
        if not keep:
            if not closing:
                logger.warning("Discarding unhealthy connection %s", conn.id)
            await self._destroy(conn)
        if spawn:
            self._spawn_fill(spawn)
    
    async def reap_idle(self, max_idle: float) -> int:
        """Destroy idle connections unused for ``max_idle`` seconds, keeping ``min_size``."""
        if self._closed:
            return 0
        victims = self._take_reapable_locked(max_idle)
        for conn in victims:
            await self._destroy(conn)
        if victims:
            logger.info("Reaped %d idle connection(s)", len(victims))
        return len(victims)
    
    def stats(self) -> PoolStats:
        return self._stats_locked()
    
    async def close(self, grace_period: Optional[float] = _UNSET) -> None:
        """
        Close the pool. Safe to call more than once.
        
        Waiters fail with PoolClosedError and idle connections are destroyed
        at once. Checked-out connections get ``grace_period`` seconds to come
        back before they are closed underneath their holders.
        """
        if grace_period is _UNSET:
            grace_period = self.settings.close_grace_period
        if self._closed:
            return
        self._closed = True
        self._drained = asyncio.Event()
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(PoolClosedError())
        idle = list(self._idle)
        self._idle.clear()
        self._notify_drained()
        
        for conn in idle:
            await self._destroy(conn)
        
        try:
            async with asyncio.timeout(grace_period):
                await self._drained.wait()
        except TimeoutError:
            pass
        leftovers = self._take_force_closed_locked()
        for conn in leftovers:
            logger.warning("Force-closing connection %s still in use", conn.id)
            await self._destroy(conn)
        logger.info("Pool for %s closed", self.endpoint)
    
    async def __aenter__(self) -> 'AsyncConnectionPool':
        return self
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def create_async_pool(
    min_size: int,
    max_size: int,
    increment: int,
    endpoint: str,
    credentials: Optional[Credentials] = None,
    factory: Optional[AsyncConnectionFactory] = None,
    **options,
) -> AsyncConnectionPool:
    """
    Create a cooperative pool and open its ``min_size`` connections.
    
    Takes the same arguments as ``create_pool()`` and applies the same
    abort-on-failure policy to the initial connections.
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
    pool = AsyncConnectionPool(settings, factory)
    await pool._warm_up()
    return pool
