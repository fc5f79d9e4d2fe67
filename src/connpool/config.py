"""Configuration management for connection pools."""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip().lower() in ('', 'none'):
        return None
    return float(value)


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip().lower() in ('', 'none'):
        return None
    return int(value)


class DatabaseConfig:
    """Database configuration."""
    
    def __init__(self):
        self.user = os.getenv('DB_USER', 'postgres')
        self.host = os.getenv('DB_HOST', 'localhost')
        self.database = os.getenv('DB_NAME', 'postgres')
        self.password = os.getenv('DB_PASSWORD', 'postgres')
        self.port = int(os.getenv('DB_PORT', '5432'))
    
    @property
    def endpoint(self) -> str:
        """Endpoint string in ``host:port/database`` form."""
        return f"{self.host}:{self.port}/{self.database}"


class PoolConfig:
    """Pool sizing and timing configuration."""
    
    def __init__(self):
        self.min_size = int(os.getenv('POOL_MIN', '1'))
        self.max_size = int(os.getenv('POOL_MAX', '4'))
        self.increment = int(os.getenv('POOL_INCREMENT', '1'))
        self.wait_timeout = _optional_float('POOL_TIMEOUT')
        self.ping_interval = float(os.getenv('POOL_PING_INTERVAL', '60'))
        self.close_grace_period = float(os.getenv('POOL_GRACE_PERIOD', '5'))
        self.max_waiters = _optional_int('POOL_MAX_WAITERS')


class AppConfig:
    """Application configuration."""
    
    def __init__(self):
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')
        self.debug = os.getenv('DEBUG', 'false').lower() == 'true'


# Global configuration instances
db_config = DatabaseConfig()
pool_config = PoolConfig()
app_config = AppConfig()
