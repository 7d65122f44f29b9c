"""API routers."""
from .sites import router as sites_router
from .status import router as status_router

__all__ = ["sites_router", "status_router"]
