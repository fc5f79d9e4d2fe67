"""asyncpg-backed connection factory."""

from typing import Optional

import asyncpg

from ..exceptions import ConnectError
from ..models.pool import Credentials


class AsyncpgConnection:
    """Adapts an ``asyncpg.Connection`` to the pool's connection protocol."""
    
    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn
    
    async def is_healthy(self) -> bool:
        if self.conn.is_closed():
            return False
        try:
            return await self.conn.fetchval('SELECT 1') == 1
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            return False
    
    async def close(self) -> None:
        await self.conn.close()
    
    def __getattr__(self, name):
        return getattr(self.conn, name)


class AsyncpgConnectionFactory:
    """
    Opens PostgreSQL sessions with asyncpg.
    
    Endpoints are ``host:port/database``; the port and database parts are
    optional.
    
    Args:
        connect_timeout: Seconds allowed for each connection attempt
    """
    
    def __init__(self, connect_timeout: float = 10.0):
        self.connect_timeout = connect_timeout
    
    @staticmethod
    def parse_endpoint(endpoint: str) -> dict:
        address, _, database = endpoint.partition('/')
        host, _, port = address.partition(':')
        params = {'host': host or 'localhost'}
        if port:
            params['port'] = int(port)
        if database:
            params['database'] = database
        return params
    
    async def open(self, endpoint: str, credentials: Optional[Credentials]) -> AsyncpgConnection:
        params = self.parse_endpoint(endpoint)
        if credentials is not None:
            params['user'] = credentials.user
            params['password'] = credentials.password.get_secret_value()
        try:
            conn = await asyncpg.connect(timeout=self.connect_timeout, **params)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
            raise ConnectError(endpoint, str(e)) from e
        return AsyncpgConnection(conn)
