"""Bounded, health-checked connection pools for threads and asyncio."""

from .database import (
    AsyncConnectionPool,
    ConnectionPool,
    PooledConnection,
    create_async_pool,
    create_pool,
    init_client,
)
from .exceptions import (
    ClientInitError,
    ClientNotInitializedError,
    ConfigError,
    ConnectError,
    InvalidStateError,
    PoolClosedError,
    PoolError,
    PoolTimeoutError,
    WaitQueueFullError,
)
from .models import Credentials, PoolSettings, PoolStats

__version__ = '1.0.0'

__all__ = [
    'AsyncConnectionPool',
    'ClientInitError',
    'ClientNotInitializedError',
    'ConfigError',
    'ConnectError',
    'ConnectionPool',
    'Credentials',
    'InvalidStateError',
    'PoolClosedError',
    'PoolError',
    'PoolSettings',
    'PoolStats',
    'PoolTimeoutError',
    'PooledConnection',
    'WaitQueueFullError',
    'create_async_pool',
    'create_pool',
    'init_client',
]
