"""Process-wide default pool built from environment configuration."""

import asyncio
import logging
from typing import Optional

from ..config import db_config, pool_config
from ..models.pool import Credentials
from .aio_pool import AsyncConnectionPool, create_async_pool
from .asyncpg_factory import AsyncpgConnectionFactory
from .client import init_client, is_initialized

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None
_pool_lock: Optional[asyncio.Lock] = None


def _credentials() -> Credentials:
    return Credentials(user=db_config.user, password=db_config.password)


async def get_pool() -> AsyncConnectionPool:
    """Get or create the shared connection pool."""
    global _pool, _pool_lock
    
    if _pool is not None and not _pool.closed:
        return _pool
    if _pool_lock is None:
        _pool_lock = asyncio.Lock()
    async with _pool_lock:
        if _pool is None or _pool.closed:
            if not is_initialized():
                init_client(async_factory=AsyncpgConnectionFactory())
            _pool = await create_async_pool(
                min_size=pool_config.min_size,
                max_size=pool_config.max_size,
                increment=pool_config.increment,
                endpoint=db_config.endpoint,
                credentials=_credentials(),
                wait_timeout=pool_config.wait_timeout,
                ping_interval=pool_config.ping_interval,
                close_grace_period=pool_config.close_grace_period,
                max_waiters=pool_config.max_waiters,
            )
    return _pool


async def close_pool() -> None:
    """Close the shared connection pool if one is open."""
    global _pool, _pool_lock
    
    pool, _pool = _pool, None
    _pool_lock = None
    if pool is not None:
        await pool.close()


async def test_connection() -> bool:
    """Check that a pooled connection can be acquired and passes a health check."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            return bool(await conn.raw.is_healthy())
    except Exception as e:
        logger.error("Connection test failed: %s", e)
        return False
