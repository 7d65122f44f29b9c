"""Shared utilities."""
from .clock import utcnow
from .db_utils import retry_on_lock

__all__ = ["utcnow", "retry_on_lock"]
