# tests/fakes.py
"""
In-memory stand-ins for the PostgreSQL and Redis clients.

Each method mirrors the conditional statement the real client runs, so the
services and the lifecycle job can be exercised without live databases.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

import jwt

from classroll.backend.models.db_models import (
    AttendanceRecord, AttendanceStatus, CheckInDetails, CheckOutDetails, ClassSession, GeoFenceConfig, Grade,
    ManualOverride, SessionStatus, SessionWindows, Student, Subject
)
from classroll.backend.modules.time_window import calculate_windows

PROTECTED = {AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.EXCUSED, AttendanceStatus.LEFT_EARLY}
ACTIVE = {SessionStatus.SCHEDULED, SessionStatus.ONGOING}


class FakeStore:
    def __init__(self, geo_config: Optional[GeoFenceConfig] = None):
        self.students: Dict[str, Student] = {}
        self.sessions: Dict[UUID, ClassSession] = {}
        self.records: Dict[Tuple[UUID, str], AttendanceRecord] = {}
        self.geo_config = geo_config or GeoFenceConfig()
        self.fail_mark_absent_for: Set[str] = set()
        self.created_at = datetime.now(timezone.utc)

    # --- helpers for tests ---

    def add_student(self, student: Student):
        self.students[student.student_id] = student

    def put_session(self, session: ClassSession):
        self.sessions[session.session_id] = session

    def _update_session(self, session_id: UUID, **changes) -> ClassSession:
        updated = self.sessions[session_id].model_copy(update=changes)
        self.sessions[session_id] = updated
        return updated

    # --- Students ---

    async def get_student(self, student_id: str) -> Optional[Student]:
        return self.students.get(student_id)

    async def get_students(self, student_ids: List[str]) -> List[Student]:
        return [self.students[s] for s in student_ids if s in self.students]

    # --- Class sessions ---

    async def add_class_session(self, session: ClassSession) -> ClassSession:
        self.sessions[session.session_id] = session
        return session

    async def get_class_session(self, session_id: UUID) -> Optional[ClassSession]:
        return self.sessions.get(session_id)

    async def update_class_session_schedule(self, session_id, scheduled_date, start_time, end_time,
                                            windows: SessionWindows) -> Optional[ClassSession]:
        session = self.sessions.get(session_id)
        if not session or session.status not in ACTIVE:
            return None
        return self._update_session(
            session_id, scheduled_date=scheduled_date, start_time=start_time, end_time=end_time,
            check_in_notification_sent=False, **windows.model_dump()
        )

    async def cancel_class_session(self, session_id: UUID) -> Optional[ClassSession]:
        session = self.sessions.get(session_id)
        if not session or session.status not in ACTIVE:
            return None
        return self._update_session(session_id, status=SessionStatus.CANCELLED)

    async def find_conflicting_session(self, tutor_id, class_start, class_end, exclude_session_id=None):
        for s in sorted(self.sessions.values(), key=lambda s: s.class_start):
            if (s.tutor_id == tutor_id and s.status in ACTIVE and s.session_id != exclude_session_id
                    and s.class_start < class_end and s.class_end > class_start):
                return s
        return None

    # --- Lifecycle ---

    async def advance_sessions_to_ongoing(self, now: datetime) -> int:
        ids = [s.session_id for s in self.sessions.values()
               if s.status == SessionStatus.SCHEDULED and s.class_start <= now <= s.class_end]
        for session_id in ids:
            self._update_session(session_id, status=SessionStatus.ONGOING)
        return len(ids)

    async def complete_ended_sessions(self, now: datetime) -> int:
        ids = [s.session_id for s in self.sessions.values() if s.status in ACTIVE and s.class_end < now]
        for session_id in ids:
            self._update_session(session_id, status=SessionStatus.COMPLETED)
        return len(ids)

    async def find_sessions_starting_between(self, start, end) -> List[ClassSession]:
        return [s for s in self.sessions.values()
                if s.status == SessionStatus.SCHEDULED and not s.check_in_notification_sent
                and start <= s.class_start <= end]

    async def claim_reminder(self, session_id: UUID) -> bool:
        s = self.sessions.get(session_id)
        if not s or s.status != SessionStatus.SCHEDULED or s.check_in_notification_sent:
            return False
        self._update_session(session_id, check_in_notification_sent=True)
        return True

    async def release_reminder(self, session_id: UUID) -> None:
        self._update_session(session_id, check_in_notification_sent=False)

    async def find_sessions_with_open_check_in(self, now) -> List[ClassSession]:
        return [s for s in self.sessions.values()
                if s.status == SessionStatus.ONGOING and s.check_in_start <= now <= s.check_in_end]

    async def find_sessions_pending_absence(self, now) -> List[ClassSession]:
        return [s for s in self.sessions.values()
                if s.status != SessionStatus.CANCELLED and s.auto_mark_absent and s.check_in_end < now]

    async def clear_auto_mark_absent(self, session_id: UUID) -> None:
        self._update_session(session_id, auto_mark_absent=False)

    async def find_sessions_to_finalize(self, now) -> List[ClassSession]:
        return [s for s in self.sessions.values()
                if s.status != SessionStatus.CANCELLED and not s.records_finalized and s.check_out_end < now]

    async def finalize_session(self, session_id: UUID) -> Tuple[bool, int]:
        s = self.sessions.get(session_id)
        if not s or s.status == SessionStatus.CANCELLED or s.records_finalized:
            return False, 0
        self._update_session(session_id, status=SessionStatus.COMPLETED, records_finalized=True)
        left_early = 0
        for key, record in list(self.records.items()):
            if (key[0] == session_id and record.status in (AttendanceStatus.PRESENT, AttendanceStatus.LATE)
                    and record.check_in and not record.check_out):
                self.records[key] = record.model_copy(update={"status": AttendanceStatus.LEFT_EARLY})
                left_early += 1
        return True, left_early

    # --- Attendance records ---

    async def seed_attendance_records(self, session_id: UUID, student_ids: List[str]) -> None:
        for student_id in student_ids:
            self.records.setdefault(
                (session_id, student_id),
                AttendanceRecord(session_id=session_id, student_id=student_id, created_at=self.created_at),
            )

    async def get_attendance_records(self, session_id: UUID) -> List[AttendanceRecord]:
        return sorted((r for k, r in self.records.items() if k[0] == session_id), key=lambda r: r.student_id)

    async def get_attendance_record(self, session_id: UUID, student_id: str) -> Optional[AttendanceRecord]:
        return self.records.get((session_id, student_id))

    async def mark_absent(self, session_id: UUID, student_id: str, notes: str) -> bool:
        if student_id in self.fail_mark_absent_for:
            raise ConnectionError("store unavailable")
        key = (session_id, student_id)
        existing = self.records.get(key)
        if existing is None:
            self.records[key] = AttendanceRecord(
                session_id=session_id, student_id=student_id, auto_marked=True, notes=notes,
                created_at=self.created_at,
            )
            return True
        if existing.auto_marked or existing.check_in or existing.status in PROTECTED:
            return False
        self.records[key] = existing.model_copy(
            update={"status": AttendanceStatus.ABSENT, "auto_marked": True, "notes": notes}
        )
        return True

    async def check_in(self, session_id: UUID, student_id: str, details: CheckInDetails) -> Optional[AttendanceRecord]:
        key = (session_id, student_id)
        existing = self.records.get(key)
        if existing and existing.status == AttendanceStatus.PRESENT:
            return None
        base = existing or AttendanceRecord(session_id=session_id, student_id=student_id, created_at=self.created_at)
        record = AttendanceRecord(**{
            **base.model_dump(),
            "status": AttendanceStatus.PRESENT,
            "check_in": details.model_dump(),
            "is_verified": True,
            "auto_marked": False,
        })
        self.records[key] = record
        return record

    async def check_out(self, session_id: UUID, student_id: str, details: CheckOutDetails) -> Optional[AttendanceRecord]:
        key = (session_id, student_id)
        existing = self.records.get(key)
        if not existing or not existing.check_in or existing.check_out or existing.check_in.time > details.time:
            return None
        record = AttendanceRecord(**{**existing.model_dump(), "check_out": details.model_dump()})
        self.records[key] = record
        return record

    async def apply_manual_override(self, session_id: UUID, student_id: str, status: AttendanceStatus,
                                    override: ManualOverride) -> AttendanceRecord:
        key = (session_id, student_id)
        base = self.records.get(key) or AttendanceRecord(
            session_id=session_id, student_id=student_id, created_at=self.created_at
        )
        record = base.model_copy(update={"status": status, "manual_override": override})
        self.records[key] = record
        return record

    async def delete_attendance_records_older_than(self, cutoff: datetime) -> int:
        old = [k for k, r in self.records.items() if r.created_at and r.created_at < cutoff]
        for key in old:
            del self.records[key]
        return len(old)

    async def get_geo_fence_config(self) -> GeoFenceConfig:
        return self.geo_config


class FakeTokenStore:
    """Mirrors RedisClient's SET NX token semantics."""

    def __init__(self):
        self.tokens: Set[str] = set()

    async def claim_notification(self, kind, session_id, recipient_id=None, ttl=None) -> bool:
        key = f"{kind}:{session_id}:{recipient_id}"
        if key in self.tokens:
            return False
        self.tokens.add(key)
        return True

    async def release_notification(self, kind, session_id, recipient_id=None) -> int:
        key = f"{kind}:{session_id}:{recipient_id}"
        if key in self.tokens:
            self.tokens.discard(key)
            return 1
        return 0


def make_session(scheduled_date: date = date(2024, 3, 1), start_time: str = "09:00", end_time: str = "10:00",
                 student_ids=None, tutor_id: str = "T001", **overrides) -> ClassSession:
    """Builds a session with windows derived in UTC, the way the session service stamps them."""
    windows = calculate_windows(scheduled_date, start_time, end_time, timezone.utc)
    data = dict(
        session_id=uuid.uuid4(),
        tutor_id=tutor_id,
        created_by=tutor_id,
        subject=Subject.MATHEMATICS,
        grade=Grade.GRADE_10,
        title="Algebra revision",
        scheduled_date=scheduled_date,
        start_time=start_time,
        end_time=end_time,
        student_ids=list(student_ids) if student_ids is not None else ["S001", "S002", "S003"],
        **windows.model_dump(),
    )
    data.update(overrides)
    return ClassSession(**data)


def at(hhmm: str, seconds: int = 0, day: date = date(2024, 3, 1)) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime(day.year, day.month, day.day, int(hours), int(minutes), seconds, tzinfo=timezone.utc)


def bearer(user_id: str, role: str, secret: str) -> dict:
    """Authorization header carrying a token the way the identity service issues them."""
    token = jwt.encode({"sub": user_id, "role": role}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
