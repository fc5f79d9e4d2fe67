"""Pool data models."""

from typing import Optional
from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator

from ..exceptions import ConfigError


class Credentials(BaseModel):
    """Backend credentials."""
    
    user: str
    password: SecretStr = SecretStr('')


class PoolSettings(BaseModel):
    """Validated pool sizing, timing and endpoint settings."""
    
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=4, ge=1)
    increment: int = Field(default=1, gt=0)
    endpoint: str
    credentials: Optional[Credentials] = None
    wait_timeout: Optional[float] = Field(default=None, ge=0)  # None waits forever
    ping_interval: float = 60.0  # 0 pings on every acquire, negative never
    close_grace_period: float = Field(default=5.0, ge=0)
    max_waiters: Optional[int] = Field(default=None, ge=0)
    
    @model_validator(mode='after')
    def check_bounds(self) -> 'PoolSettings':
        if self.min_size > self.max_size:
            raise ValueError(
                f"min_size ({self.min_size}) must not exceed max_size ({self.max_size})"
            )
        return self
    
    @classmethod
    def build(cls, **values) -> 'PoolSettings':
        """Validate ``values``, raising ConfigError instead of ValidationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid pool settings: {e}") from e


class PoolStats(BaseModel):
    """Point-in-time snapshot of a pool."""
    
    min_size: int
    max_size: int
    increment: int
    idle: int
    in_use: int
    opening: int
    waiters: int
    opened_total: int
    destroyed_total: int
    closed: bool
    
    @property
    def size(self) -> int:
        return self.idle + self.in_use
