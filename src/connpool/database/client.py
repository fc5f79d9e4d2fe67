"""Process-wide client initialization."""

import logging
import threading
from typing import Optional, Tuple

from ..config import app_config
from ..exceptions import ClientInitError, ClientNotInitializedError, ConfigError
from .connection import AsyncConnectionFactory, ConnectionFactory

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_init_args: Optional[Tuple] = None
_factory: Optional[ConnectionFactory] = None
_async_factory: Optional[AsyncConnectionFactory] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from ``level``, ``LOG_LEVEL`` or ``DEBUG``."""
    if level is None:
        level = 'DEBUG' if app_config.debug else app_config.log_level
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def init_client(
    factory: Optional[ConnectionFactory] = None,
    async_factory: Optional[AsyncConnectionFactory] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Run the one-time, process-wide client setup.
    
    Registers the default connection factories used by pools created
    without an explicit one and configures logging. Calling it again with
    the same arguments does nothing.
    
    Args:
        factory: Default blocking factory for ``ConnectionPool``
        async_factory: Default cooperative factory for ``AsyncConnectionPool``
        log_level: Logging level name, defaults to ``LOG_LEVEL``
    
    Raises:
        ClientInitError: If already initialized with different arguments
    """
    global _init_args, _factory, _async_factory
    
    args = (factory, async_factory, log_level)
    with _lock:
        if _init_args is not None:
            if any(a is not b for a, b in zip(_init_args, args)):
                raise ClientInitError(
                    "Client already initialized with different arguments"
                )
            return
        _init_args = args
        _factory = factory
        _async_factory = async_factory
    
    configure_logging(log_level)
    logger.debug("Client initialized")


def is_initialized() -> bool:
    return _init_args is not None


def require_initialized() -> None:
    if _init_args is None:
        raise ClientNotInitializedError()


def default_factory() -> ConnectionFactory:
    require_initialized()
    if _factory is None:
        raise ConfigError("No connection factory given and none registered by init_client()")
    return _factory


def default_async_factory() -> AsyncConnectionFactory:
    require_initialized()
    if _async_factory is None:
        raise ConfigError("No async connection factory given and none registered by init_client()")
    return _async_factory


def reset_client() -> None:
    """Forget the process-wide initialization. Meant for tests."""
    global _init_args, _factory, _async_factory
    with _lock:
        _init_args = None
        _factory = None
        _async_factory = None
