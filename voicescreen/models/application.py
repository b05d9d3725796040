"""
Application models (collaborator entity mutated by the screening core).
"""
import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from .enums import ApplicationStatus


class TimelineEntry(BaseModel):
    """Immutable record of one status change on an application."""
    application_id: uuid.UUID
    step: str
    status: ApplicationStatus
    note: Optional[str] = None
    actor: str = "system"
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApplicationRecord(BaseModel):
    id: uuid.UUID
    candidate_id: uuid.UUID
    job_id: uuid.UUID
    status: ApplicationStatus
    current_step: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
