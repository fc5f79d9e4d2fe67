"""Deadline tracking for blocking pool calls."""

import time
from typing import Optional


class Deadline:
    """
    A point in monotonic time after which a blocking call gives up.
    
    A ``timeout`` of ``None`` never expires. A ``timeout`` of ``0`` is
    already expired, so callers can use it to mean "do not block".
    
    Example:
        >>> deadline = Deadline(2.5)
        >>> deadline.remaining() <= 2.5
        True
        >>> Deadline(None).remaining() is None
        True
    """
    
    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + max(timeout, 0)
    
    def remaining(self) -> Optional[float]:
        """Seconds left, ``None`` when unbounded, never negative."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)
    
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0
