# classroll/backend/api/schemas/session.py
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import date, datetime
from typing import Optional, List

from ...models.db_models import Grade, Recurrence, SessionStatus, Subject


class SessionCreateRequest(BaseModel):
    """Request model for scheduling a class. Tutors may omit tutor_id; admins must set it."""
    tutor_id: Optional[str] = Field(None, description="Owning tutor. Defaults to the calling tutor.")
    subject: Subject
    grade: Grade
    title: str = Field(..., min_length=1)
    description: str = ""
    scheduled_date: date = Field(..., description="Calendar date in the school timezone.")
    start_time: str = Field(..., description="HH:MM, 24h.")
    end_time: str = Field(..., description="HH:MM, 24h.")
    room: Optional[str] = None
    meeting_link: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    recurrence: Recurrence = Recurrence.NONE
    max_students: int = Field(30, ge=1)


class SessionRescheduleRequest(BaseModel):
    scheduled_date: date
    start_time: str = Field(..., description="HH:MM, 24h.")
    end_time: str = Field(..., description="HH:MM, 24h.")


class SessionResponse(BaseModel):
    """Response model for a class session, including the derived windows."""
    session_id: UUID
    tutor_id: str
    subject: Subject
    grade: Grade
    title: str
    description: str
    scheduled_date: date
    start_time: str
    end_time: str
    room: Optional[str] = None
    meeting_link: Optional[str] = None
    student_ids: List[str]
    recurrence: Recurrence
    max_students: int
    status: SessionStatus
    class_start: datetime
    class_end: datetime
    check_in_start: datetime
    check_in_end: datetime
    check_out_start: datetime
    check_out_end: datetime

    model_config = ConfigDict(from_attributes=True)
