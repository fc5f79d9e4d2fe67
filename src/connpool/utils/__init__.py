"""Pool utilities."""

from .deadline import Deadline

__all__ = ['Deadline']
