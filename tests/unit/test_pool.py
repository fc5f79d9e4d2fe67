"""Tests for the threaded connection pool."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
import pytest

from connpool import (
    ClientNotInitializedError,
    ConfigError,
    ConnectError,
    InvalidStateError,
    PoolClosedError,
    PoolTimeoutError,
    WaitQueueFullError,
    create_pool,
)


def make_pool(min_size=2, max_size=4, increment=1, **options):
    return create_pool(min_size, max_size, increment, 'db.local:5432/app', **options)


@pytest.mark.parametrize('min_size,max_size,increment', [(0, 1, 1), (2, 4, 1), (3, 3, 2), (1, 10, 5)])
def test_create_opens_min_size(initialized, factory, min_size, max_size, increment):
    """Test that creation leaves exactly min_size idle connections."""
    pool = make_pool(min_size, max_size, increment)
    
    assert pool.idle_count == min_size
    assert pool.in_use_count == 0
    assert len(factory.opened) == min_size
    pool.close()


@pytest.mark.parametrize('min_size,max_size,increment', [(5, 4, 1), (1, 4, 0), (1, 4, -1), (-1, 4, 1), (0, 0, 1)])
def test_create_rejects_invalid_bounds(initialized, min_size, max_size, increment):
    """Test that invalid sizing raises ConfigError."""
    with pytest.raises(ConfigError):
        make_pool(min_size, max_size, increment)


def test_create_before_init_client():
    """Test that pools cannot be created before client initialization."""
    with pytest.raises(ClientNotInitializedError):
        make_pool()


def test_create_aborts_on_initial_connect_failure(initialized, factory):
    """Test that a failed warm-up closes what was opened and raises."""
    factory.fail_after = 1
    
    with pytest.raises(ConnectError):
        make_pool(min_size=3, max_size=4)
    
    assert len(factory.opened) == 1
    assert factory.opened[0].closed


def test_scenario_grows_to_max_then_blocks(initialized, factory):
    """Test min=2, max=4, increment=1: four acquires succeed, a fifth waits for a release."""
    pool = make_pool(min_size=2, max_size=4, increment=1)
    
    held = [pool.acquire(timeout=0) for _ in range(4)]
    assert len({conn.id for conn in held}) == 4
    assert len(factory.opened) == 4
    assert pool.in_use_count == 4
    
    with ThreadPoolExecutor(max_workers=1) as executor:
        fifth = executor.submit(pool.acquire, 5)
        time.sleep(0.1)
        assert not fifth.done()
        assert pool.stats().waiters == 1
        
        pool.release(held[0])
        conn = fifth.result(timeout=2)
    
    assert conn is held[0]
    assert len(factory.opened) == 4
    pool.close()


def test_acquire_timeout_zero_fails_immediately(initialized):
    """Test that timeout=0 on an exhausted pool raises without blocking."""
    pool = make_pool(min_size=1, max_size=1)
    pool.acquire()
    
    started = time.monotonic()
    with pytest.raises(PoolTimeoutError) as exc_info:
        pool.acquire(timeout=0)
    
    assert time.monotonic() - started < 0.5
    assert isinstance(exc_info.value, TimeoutError)
    assert pool.stats().waiters == 0
    pool.close(grace_period=0)


def test_acquire_times_out_after_deadline(initialized):
    """Test that a waiting acquire gives up after its timeout."""
    pool = make_pool(min_size=1, max_size=1)
    pool.acquire()
    
    started = time.monotonic()
    with pytest.raises(PoolTimeoutError):
        pool.acquire(timeout=0.1)
    
    assert time.monotonic() - started >= 0.09
    assert pool.stats().waiters == 0
    pool.close(grace_period=0)


def test_default_timeout_comes_from_settings(initialized):
    """Test that acquire() without a timeout uses wait_timeout."""
    pool = make_pool(min_size=1, max_size=1, wait_timeout=0)
    pool.acquire()
    
    with pytest.raises(PoolTimeoutError):
        pool.acquire()
    pool.close(grace_period=0)


def test_exactly_capacity_acquires_succeed_concurrently(initialized):
    """Test that with M connections and N > M callers exactly M succeed at once."""
    pool = make_pool(min_size=3, max_size=3)
    callers = 8
    barrier = threading.Barrier(callers)
    
    def grab():
        barrier.wait()
        try:
            return pool.acquire(timeout=0)
        except PoolTimeoutError:
            return None
    
    with ThreadPoolExecutor(max_workers=callers) as executor:
        results = list(executor.map(lambda _: grab(), range(callers)))
    
    won = [conn for conn in results if conn is not None]
    assert len(won) == 3
    assert len({conn.id for conn in won}) == 3
    for conn in won:
        pool.release(conn)
    pool.close()


def test_no_connection_handed_to_two_threads(initialized, factory):
    """Test the no-double-handout invariant under contention."""
    pool = make_pool(min_size=1, max_size=3, increment=1)
    holders = set()
    guard = threading.Lock()
    violations = []
    
    def work():
        for _ in range(20):
            with pool.connection(timeout=None) as conn:
                with guard:
                    if conn.id in holders:
                        violations.append(conn.id)
                    holders.add(conn.id)
                time.sleep(0.001)
                with guard:
                    holders.discard(conn.id)
    
    with ThreadPoolExecutor(max_workers=8) as executor:
        for future in [executor.submit(work) for _ in range(8)]:
            future.result(timeout=10)
    
    assert violations == []
    assert pool.in_use_count == 0
    assert pool.size <= 3
    assert len(factory.opened) <= 3
    pool.close()


def test_waiters_are_served_in_fifo_order(initialized, wait_until):
    """Test that blocked callers get connections in arrival order."""
    pool = make_pool(min_size=1, max_size=1)
    conn = pool.acquire()
    order = []
    
    def wait_for_turn(name):
        got = pool.acquire(timeout=5)
        order.append(name)
        pool.release(got)
    
    first = threading.Thread(target=wait_for_turn, args=('first',))
    first.start()
    assert wait_until(lambda: pool.stats().waiters == 1)
    second = threading.Thread(target=wait_for_turn, args=('second',))
    second.start()
    assert wait_until(lambda: pool.stats().waiters == 2)
    
    pool.release(conn)
    first.join(timeout=2)
    second.join(timeout=2)
    
    assert order == ['first', 'second']
    pool.close()


def test_growth_uses_increment(initialized, factory, wait_until):
    """Test that an empty pool grows by increment, capped at max_size."""
    pool = make_pool(min_size=0, max_size=3, increment=2)
    
    first = pool.acquire()
    assert wait_until(lambda: len(factory.opened) == 2 and pool.idle_count == 1)
    
    second = pool.acquire()
    assert len(factory.opened) == 2
    
    third = pool.acquire()
    assert len(factory.opened) == 3
    assert len({first.id, second.id, third.id}) == 3
    pool.close(grace_period=0)


def test_growth_returns_after_one_connect(initialized, factory, wait_until):
    """Test that the growing caller does not wait for the whole increment to open."""
    pool = make_pool(min_size=0, max_size=4, increment=3)
    factory.delay = 0.2
    
    started = time.monotonic()
    conn = pool.acquire()
    elapsed = time.monotonic() - started
    
    assert elapsed < 0.5
    assert pool.stats().opening == 2
    assert wait_until(lambda: pool.idle_count == 2)
    assert pool.stats().opening == 0
    assert len(factory.opened) == 3
    pool.release(conn)
    pool.close()


def test_growth_failure_surfaces_connect_error(initialized, factory):
    """Test that a failed on-demand connection reaches the caller."""
    pool = make_pool(min_size=0, max_size=2)
    factory.fail = True
    
    with pytest.raises(ConnectError):
        pool.acquire(timeout=0)
    
    stats = pool.stats()
    assert stats.opening == 0
    assert stats.in_use == 0
    pool.close()


def test_release_returns_connection_to_idle(initialized):
    """Test a healthy release."""
    pool = make_pool(min_size=1, max_size=2)
    conn = pool.acquire()
    assert pool.idle_count == 0
    
    pool.release(conn)
    
    assert pool.idle_count == 1
    assert pool.in_use_count == 0
    assert not conn.in_use
    assert conn.raw.health_checks == 1
    pool.close()


def test_release_unhealthy_destroys_and_replaces(initialized, factory, wait_until):
    """Test that an unhealthy release is destroyed and min_size is restored."""
    pool = make_pool(min_size=2, max_size=4)
    conn = pool.acquire()
    assert pool.idle_count == 1
    conn.raw.healthy = False
    
    pool.release(conn)
    
    assert conn.raw.closed
    assert wait_until(lambda: pool.size >= 2)
    assert len(factory.opened) == 3
    assert pool.stats().destroyed_total == 1
    pool.close()


def test_release_marked_dead_skips_health_check(initialized):
    """Test that alive=False discards without probing the backend."""
    pool = make_pool(min_size=0, max_size=2)
    conn = pool.acquire()
    checks = conn.raw.health_checks
    conn.alive = False
    
    pool.release(conn)
    
    assert conn.raw.closed
    assert conn.raw.health_checks == checks
    assert pool.idle_count == 0
    pool.close()


def test_release_twice_raises(initialized):
    """Test that a double release is rejected."""
    pool = make_pool()
    conn = pool.acquire()
    pool.release(conn)
    
    with pytest.raises(InvalidStateError):
        pool.release(conn)
    pool.close()


def test_release_foreign_connection_raises(initialized):
    """Test that releasing another pool's connection is rejected."""
    pool = make_pool()
    other = make_pool()
    conn = other.acquire()
    
    with pytest.raises(InvalidStateError):
        pool.release(conn)
    with pytest.raises(InvalidStateError):
        pool.release(object())
    
    other.release(conn)
    pool.close()
    other.close()


def test_stale_idle_connection_is_replaced_on_acquire(initialized):
    """Test that acquire health-checks idle connections past ping_interval."""
    pool = make_pool(min_size=2, max_size=4, ping_interval=0)
    stale = pool._idle[-1]
    stale.raw.healthy = False
    
    conn = pool.acquire()
    
    assert conn is not stale
    assert stale.raw.closed
    assert conn.raw.healthy
    pool.close()


def test_negative_ping_interval_skips_acquire_check(initialized):
    """Test that a negative ping_interval hands out idle connections unchecked."""
    pool = make_pool(min_size=1, max_size=1, ping_interval=-1)
    idle = pool._idle[-1]
    idle.raw.healthy = False
    
    conn = pool.acquire()
    
    assert conn is idle
    assert idle.raw.health_checks == 0
    pool.close(grace_period=0)


def test_max_waiters_rejects_extra_callers(initialized):
    """Test the bound on outstanding acquires."""
    pool = make_pool(min_size=1, max_size=1, max_waiters=0)
    pool.acquire()
    
    with pytest.raises(WaitQueueFullError):
        pool.acquire(timeout=None)
    pool.close(grace_period=0)


def test_connection_context_releases_on_error(initialized):
    """Test that scoped acquisition releases on the error path."""
    pool = make_pool(min_size=1, max_size=1)
    
    with pytest.raises(RuntimeError):
        with pool.connection() as conn:
            assert pool.in_use_count == 1
            raise RuntimeError('boom')
    
    assert pool.in_use_count == 0
    assert pool.idle_count == 1
    assert not conn.in_use
    pool.close()


def test_reap_idle_keeps_min_size(initialized):
    """Test that the idle reaper shrinks toward min_size only."""
    pool = make_pool(min_size=1, max_size=4)
    held = [pool.acquire() for _ in range(3)]
    for conn in held:
        pool.release(conn)
    assert pool.idle_count == 3
    
    assert pool.reap_idle(3600) == 0
    assert pool.reap_idle(0) == 2
    assert pool.size == 1
    pool.close()


def test_close_then_acquire_raises(initialized, factory):
    """Test that a closed pool refuses acquires and closed its idle connections."""
    pool = make_pool()
    pool.close()
    
    with pytest.raises(PoolClosedError):
        pool.acquire()
    assert all(conn.closed for conn in factory.opened)
    
    pool.close()
    assert pool.closed


def test_close_wakes_waiters(initialized, wait_until):
    """Test that waiters fail with PoolClosedError when the pool closes."""
    pool = make_pool(min_size=1, max_size=1)
    held = pool.acquire()
    
    with ThreadPoolExecutor(max_workers=1) as executor:
        waiting = executor.submit(pool.acquire, 5)
        assert wait_until(lambda: pool.stats().waiters == 1)
        pool.close(grace_period=0)
        
        with pytest.raises(PoolClosedError):
            waiting.result(timeout=2)
    
    assert held.raw.closed
    # Releasing a connection closed by the pool is accepted once.
    pool.release(held)


def test_close_waits_for_in_use_connections(initialized):
    """Test that close() lets holders release within the grace period."""
    pool = make_pool(min_size=1, max_size=1)
    conn = pool.acquire()
    
    timer = threading.Timer(0.1, pool.release, args=(conn,))
    timer.start()
    pool.close(grace_period=5)
    timer.join()
    
    assert conn.raw.closed
    assert pool.in_use_count == 0
    assert pool.stats().destroyed_total == 1


def test_pool_as_context_manager_closes(initialized, factory):
    """Test that leaving the pool's with-block closes it."""
    with make_pool() as pool:
        with pool.connection():
            pass
    
    assert pool.closed
    assert all(conn.closed for conn in factory.opened)
