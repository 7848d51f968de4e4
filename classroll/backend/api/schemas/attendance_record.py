# classroll/backend/api/schemas/attendance_record.py
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from typing import Optional, List

from ...models.db_models import (
    AttendanceStatus, CheckInDetails, CheckOutDetails, GeoPoint, ManualOverride, SecurityFlag
)


class CheckInRequest(BaseModel):
    """Request model for signing the register. Students may omit student_id."""
    student_id: Optional[str] = Field(None, description="Defaults to the calling student.")
    device_id: Optional[str] = None
    location: Optional[GeoPoint] = None


class CheckOutRequest(BaseModel):
    student_id: Optional[str] = Field(None, description="Defaults to the calling student.")
    device_id: Optional[str] = None
    location: Optional[GeoPoint] = None


class AttendanceOverrideRequest(BaseModel):
    status: AttendanceStatus
    reason: str = Field(..., min_length=3, description="Why the status is being changed by hand.")


class AttendanceRecordResponse(BaseModel):
    """Response model for a student's attendance record in a class session."""
    session_id: UUID
    student_id: str
    status: AttendanceStatus
    check_in: Optional[CheckInDetails] = None
    check_out: Optional[CheckOutDetails] = None
    duration_minutes: Optional[int] = None
    is_verified: bool
    auto_marked: bool
    notes: Optional[str] = None
    flags: List[SecurityFlag] = Field(default_factory=list)
    manual_override: Optional[ManualOverride] = None

    model_config = ConfigDict(from_attributes=True)
