"""Connection pools and backend adapters."""

from .aio_pool import AsyncConnectionPool, create_async_pool
from .client import init_client, is_initialized
from .connection import (
    AsyncConnection,
    AsyncConnectionFactory,
    Connection,
    ConnectionFactory,
    ConnectionState,
    PooledConnection,
)
from .pool import ConnectionPool, create_pool
from .shared import close_pool, get_pool, test_connection

__all__ = [
    'AsyncConnection',
    'AsyncConnectionFactory',
    'AsyncConnectionPool',
    'Connection',
    'ConnectionFactory',
    'ConnectionPool',
    'ConnectionState',
    'PooledConnection',
    'close_pool',
    'create_async_pool',
    'create_pool',
    'get_pool',
    'init_client',
    'is_initialized',
    'test_connection',
]
