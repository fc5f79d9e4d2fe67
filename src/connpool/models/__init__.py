"""Pool data models."""

from .pool import Credentials, PoolSettings, PoolStats

__all__ = ['Credentials', 'PoolSettings', 'PoolStats']
