"""
API routers.
"""
from .health import router as health_router
from .screening import router as screening_router
from .vapi import router as vapi_router

__all__ = ["health_router", "screening_router", "vapi_router"]
