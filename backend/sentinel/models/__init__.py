"""Database models."""
from .site import Site
from .check_record import CheckRecord
from .alert import Alert

__all__ = ["Site", "CheckRecord", "Alert"]
