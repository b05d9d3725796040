"""
Call orchestration workflows.
"""
from .screening_session import CallContext, CallDataAccumulator, ScreeningSession

__all__ = ["CallContext", "CallDataAccumulator", "ScreeningSession"]
