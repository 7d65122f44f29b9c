"""Pydantic schemas for API request/response models."""
from .site import (
    SiteCreate,
    CheckResultOut,
    SiteResponse,
    WorkerStats,
)

__all__ = [
    "SiteCreate",
    "CheckResultOut",
    "SiteResponse",
    "WorkerStats",
]
