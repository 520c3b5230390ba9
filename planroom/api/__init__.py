"""HTTP endpoints."""

from planroom.api.sessions_api import router as sessions_router

__all__ = ["sessions_router"]
