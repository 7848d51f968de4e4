# classroll/backend/models/db_models.py

import math
from pydantic import BaseModel, Field, model_validator
from datetime import datetime, date
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import UUID


class Subject(str, Enum):
    NATURAL_SCIENCES = "Natural Sciences"
    MATHEMATICS = "Mathematics"
    MATHEMATICAL_LITERACY = "Mathematical Literacy"
    PHYSICAL_SCIENCES = "Physical Sciences"
    BUSINESS_STUDIES = "Business Studies"
    ENGLISH = "English"
    AGRICULTURAL_SCIENCES = "Agricultural Sciences"
    GEOGRAPHY = "Geography"
    LIFE_SCIENCES = "Life Sciences"
    ACCOUNTING = "Accounting"


class Grade(str, Enum):
    GRADE_8 = "8"
    GRADE_9 = "9"
    GRADE_10 = "10"
    GRADE_11 = "11"
    GRADE_12 = "12"


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendanceStatus(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"
    LATE = "late"
    EXCUSED = "excused"
    LEFT_EARLY = "left_early"


class VerificationMethod(str, Enum):
    LOCATION = "location"
    WIFI = "wifi"
    QR = "qr"
    MANUAL = "manual"
    BOTH = "both"
    IP_VERIFIED = "ip_verified"


class SecurityFlag(str, Enum):
    HIGH_ACCURACY = "high_accuracy"
    SUSPICIOUS_LOCATION = "suspicious_location"
    DIFFERENT_DEVICE = "different_device"
    OFF_HOURS = "off_hours"
    IP_MISMATCH = "ip_mismatch"


class Role(str, Enum):
    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"
    PARENT = "parent"


class Principal(BaseModel):
    """
    The authenticated caller. Passed explicitly into every mutating operation
    instead of being read from request-global state.
    """
    user_id: str = Field(..., description="Id of the authenticated user (tutor id, student id or admin id).")
    role: Role


class GeoPoint(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = Field(None, description="Reported accuracy radius in meters.")


class SessionWindows(BaseModel):
    """The six instants derived from a calendar date and two "HH:MM" strings."""
    class_start: datetime
    class_end: datetime
    check_in_start: datetime
    check_in_end: datetime
    check_out_start: datetime
    check_out_end: datetime


class ClassSession(BaseModel):
    """
    One scheduled class occurrence, mapping to the 'ClassSessions' table.
    The window instants are recomputed whenever the date or times change.
    """
    session_id: UUID = Field(..., description="Unique identifier for the class session")
    tutor_id: str = Field(..., description="The tutor who owns the session")
    created_by: str
    subject: Subject
    grade: Grade
    title: str
    description: str = ""
    scheduled_date: date
    start_time: str = Field(..., description="HH:MM, 24h")
    end_time: str = Field(..., description="HH:MM, 24h")
    room: Optional[str] = None
    meeting_link: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    recurrence: Recurrence = Recurrence.NONE
    max_students: int = Field(30, ge=1)

    class_start: datetime
    class_end: datetime
    check_in_start: datetime
    check_in_end: datetime
    check_out_start: datetime
    check_out_end: datetime

    status: SessionStatus = SessionStatus.SCHEDULED
    auto_mark_absent: bool = True
    auto_assigned: bool = False
    check_in_notification_sent: bool = False
    records_finalized: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def windows(self) -> SessionWindows:
        return SessionWindows(**self.model_dump(include=set(SessionWindows.model_fields)))

    def is_check_in_available(self, now: datetime) -> bool:
        return self.check_in_start <= now <= self.check_in_end

    def is_check_out_available(self, now: datetime) -> bool:
        return self.check_out_start <= now <= self.check_out_end

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


class CheckInDetails(BaseModel):
    time: datetime
    location: Optional[GeoPoint] = None
    ip_address: Optional[str] = None
    device_id: Optional[str] = None
    verification_method: VerificationMethod = VerificationMethod.MANUAL


class CheckOutDetails(BaseModel):
    time: datetime
    location: Optional[GeoPoint] = None
    ip_address: Optional[str] = None
    device_id: Optional[str] = None


class ManualOverride(BaseModel):
    by: str = Field(..., description="User id of the tutor or admin who changed the status")
    reason: str
    timestamp: datetime
    original_status: AttendanceStatus


class AttendanceRecord(BaseModel):
    """
    A single student's record for a class session, mapping to the
    'AttendanceRecords' table. At most one record per (session_id, student_id).
    """
    session_id: UUID = Field(..., description="FK linking to the class session")
    student_id: str = Field(..., description="FK linking to the student")
    status: AttendanceStatus = AttendanceStatus.ABSENT
    check_in: Optional[CheckInDetails] = None
    check_out: Optional[CheckOutDetails] = None
    duration_minutes: Optional[int] = None
    is_verified: bool = False
    auto_marked: bool = False
    notes: Optional[str] = None
    flags: List[SecurityFlag] = Field(default_factory=list)
    manual_override: Optional[ManualOverride] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _recompute_duration(self):
        # Negative durations are rejected by the check-out service, not here.
        if self.check_in and self.check_out:
            seconds = (self.check_out.time - self.check_in.time).total_seconds()
            # Half-up, like ROUND() in the check-out statement.
            self.duration_minutes = math.floor(seconds / 60 + 0.5)
        return self


class Student(BaseModel):
    """Minimal student profile used to resolve notification recipients."""
    student_id: str
    user_id: str
    full_name: str
    parent_ids: List[str] = Field(default_factory=list)


class GeoFenceConfig(BaseModel):
    """
    The school's geo-fencing settings, mapping to the singleton 'SchoolConfig'
    row. Defaults are used when the row does not exist yet.
    """
    geo_fencing_enabled: bool = True
    latitude: float = Field(-26.2041, ge=-90, le=90)
    longitude: float = Field(28.0473, ge=-180, le=180)
    allowed_radius_meters: float = Field(200, ge=50, le=1000)
    require_accuracy: bool = True
    max_accuracy_meters: float = Field(100, ge=10)

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


class NotificationKind(str, Enum):
    CLASS_REMINDER = "class_reminder"
    CHECK_IN_AVAILABLE = "check_in_available"
    ATTENDANCE_CONFIRMATION = "attendance_confirmation"
    ABSENCE_ALERT = "absence_alert"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class Notification(BaseModel):
    recipient_id: str
    kind: NotificationKind
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL


class LifecycleReport(BaseModel):
    """Counters returned by one lifecycle tick."""
    transitioned: int = 0
    reminders_sent: int = 0
    windows_opened: int = 0
    absentees_marked: int = 0
    sessions_finalized: int = 0
    errors: int = 0


class SessionParams(BaseModel):
    """Input for creating a class session. Window instants are derived, never supplied."""
    tutor_id: str
    subject: Subject
    grade: Grade
    title: str = Field(..., min_length=1)
    description: str = ""
    scheduled_date: date
    start_time: str
    end_time: str
    room: Optional[str] = None
    meeting_link: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    recurrence: Recurrence = Recurrence.NONE
    max_students: int = Field(30, ge=1)
    auto_assigned: bool = False


# Forward-only lifecycle; completed and cancelled are terminal.
ALLOWED_TRANSITIONS = {
    SessionStatus.SCHEDULED: {SessionStatus.ONGOING, SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.ONGOING: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_check_in_available(session: ClassSession, now: datetime) -> bool:
    return session.is_check_in_available(now)


def is_check_out_available(session: ClassSession, now: datetime) -> bool:
    return session.is_check_out_available(now)
