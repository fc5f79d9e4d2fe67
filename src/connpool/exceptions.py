"""Exceptions raised by connection pools."""

from typing import Optional


class PoolError(Exception):
    """Base class for every pool error."""


class ConfigError(PoolError, ValueError):
    """Invalid pool configuration (bounds, timeouts, missing factory)."""


class ClientNotInitializedError(ConfigError):
    """A pool was created before ``init_client()`` ran."""
    
    def __init__(self) -> None:
        super().__init__(
            "Client is not initialized. Call connpool.init_client() once "
            "before creating any pool."
        )


class ClientInitError(ConfigError):
    """``init_client()`` was called again with different arguments."""


class ConnectError(PoolError):
    """The backend could not be reached. Retryable by the caller."""
    
    def __init__(self, endpoint: str, reason: Optional[str] = None) -> None:
        message = f"Could not connect to {endpoint}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.endpoint = endpoint
        self.reason = reason


class PoolTimeoutError(PoolError, TimeoutError):
    """No connection became available before the acquire deadline."""
    
    def __init__(self, timeout: Optional[float], message: Optional[str] = None) -> None:
        super().__init__(message or f"No connection available within {timeout}s")
        self.timeout = timeout


class WaitQueueFullError(PoolTimeoutError):
    """Too many callers are already waiting for a connection."""
    
    def __init__(self, max_waiters: int) -> None:
        super().__init__(
            0, f"Acquire rejected: {max_waiters} callers already waiting"
        )
        self.max_waiters = max_waiters


class PoolClosedError(PoolError):
    """The pool was closed; no further acquires are served."""
    
    def __init__(self) -> None:
        super().__init__("Pool is closed")


class InvalidStateError(PoolError):
    """A connection was released twice or to a pool that does not own it."""
