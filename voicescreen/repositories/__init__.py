"""
Repository layer for data access.
"""
from .screening_call_repo import ScreeningCallRepository
from .application_repo import ApplicationRepository

__all__ = [
    "ScreeningCallRepository",
    "ApplicationRepository",
]
