import logging
from datetime import date, datetime
from typing import List, Optional, Tuple
from uuid import UUID

import asyncpg

from ..models.db_models import (
    AttendanceRecord, AttendanceStatus, CheckInDetails, CheckOutDetails, ClassSession,
    GeoFenceConfig, GeoPoint, ManualOverride, SessionWindows, Student
)

logger = logging.getLogger(__name__)

# Statuses the absence pass must never overwrite. left_early students did sign in.
PROTECTED_STATUSES = ("present", "late", "excused", "left_early")

_SESSION_COLUMNS = (
    "session_id", "tutor_id", "created_by", "subject", "grade", "title", "description",
    "scheduled_date", "start_time", "end_time", "room", "meeting_link", "student_ids",
    "recurrence", "max_students", "class_start", "class_end", "check_in_start", "check_in_end",
    "check_out_start", "check_out_end", "status", "auto_mark_absent", "auto_assigned",
    "check_in_notification_sent", "records_finalized",
)


def _affected_rows(result: str) -> int:
    """Reads the row count out of an asyncpg status string such as 'DELETE 3'."""
    try:
        return int(str(result).split()[-1])
    except (ValueError, IndexError):
        return 0


def _geo(latitude, longitude, accuracy) -> Optional[GeoPoint]:
    if latitude is None or longitude is None:
        return None
    return GeoPoint(latitude=latitude, longitude=longitude, accuracy=accuracy)


def _session_from_row(row) -> ClassSession:
    return ClassSession(**row)


def _record_from_row(row) -> AttendanceRecord:
    check_in = None
    if row["check_in_time"] is not None:
        check_in = CheckInDetails(
            time=row["check_in_time"],
            location=_geo(row["check_in_latitude"], row["check_in_longitude"], row["check_in_accuracy"]),
            ip_address=row["check_in_ip"],
            device_id=row["check_in_device_id"],
            verification_method=row["verification_method"] or "manual",
        )
    check_out = None
    if row["check_out_time"] is not None:
        check_out = CheckOutDetails(
            time=row["check_out_time"],
            location=_geo(row["check_out_latitude"], row["check_out_longitude"], row["check_out_accuracy"]),
            ip_address=row["check_out_ip"],
            device_id=row["check_out_device_id"],
        )
    manual_override = None
    if row["override_by"] is not None:
        manual_override = ManualOverride(
            by=row["override_by"],
            reason=row["override_reason"] or "",
            timestamp=row["override_time"],
            original_status=row["override_original_status"],
        )
    return AttendanceRecord(
        session_id=row["session_id"],
        student_id=row["student_id"],
        status=row["status"],
        check_in=check_in,
        check_out=check_out,
        duration_minutes=row["duration_minutes"],
        is_verified=row["is_verified"],
        auto_marked=row["auto_marked"],
        notes=row["notes"],
        flags=list(row["flags"] or []),
        manual_override=manual_override,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class AsyncPostgresClient:
    """
    PostgreSQL client for class sessions, attendance records and the school
    configuration. Every state change the lifecycle job depends on is a single
    conditional statement, so overlapping ticks and concurrent requests are
    safe without application locks.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # ===== Students =====

    async def get_student(self, student_id: str) -> Optional[Student]:
        query = "SELECT * FROM Students WHERE student_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id)
            return Student(**record) if record else None

    async def get_students(self, student_ids: List[str]) -> List[Student]:
        if not student_ids:
            return []
        query = "SELECT * FROM Students WHERE student_id = ANY($1);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, list(student_ids))
            return [Student(**record) for record in records]

    # ===== Class Sessions =====

    async def add_class_session(self, session: ClassSession) -> ClassSession:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_SESSION_COLUMNS) + 1))
        query = f"""
            INSERT INTO ClassSessions ({", ".join(_SESSION_COLUMNS)})
            VALUES ({placeholders})
            RETURNING *;
        """
        data = session.model_dump(include=set(_SESSION_COLUMNS), mode="python")
        values = [
            data[column].value if hasattr(data[column], "value") else data[column]
            for column in _SESSION_COLUMNS
        ]
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, *values)
            return _session_from_row(record)

    async def get_class_session(self, session_id: UUID) -> Optional[ClassSession]:
        query = "SELECT * FROM ClassSessions WHERE session_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id)
            return _session_from_row(record) if record else None

    async def update_class_session_schedule(self, session_id: UUID, scheduled_date: date,
                                            start_time: str, end_time: str,
                                            windows: SessionWindows) -> Optional[ClassSession]:
        """Moves a session that is not yet finished. Re-arms the reminder flag."""
        query = """
            UPDATE ClassSessions
            SET scheduled_date = $2, start_time = $3, end_time = $4,
                class_start = $5, class_end = $6,
                check_in_start = $7, check_in_end = $8,
                check_out_start = $9, check_out_end = $10,
                check_in_notification_sent = FALSE,
                updated_at = now()
            WHERE session_id = $1 AND status IN ('scheduled', 'ongoing')
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, session_id, scheduled_date, start_time, end_time,
                windows.class_start, windows.class_end,
                windows.check_in_start, windows.check_in_end,
                windows.check_out_start, windows.check_out_end,
            )
            return _session_from_row(record) if record else None

    async def cancel_class_session(self, session_id: UUID) -> Optional[ClassSession]:
        query = """
            UPDATE ClassSessions
            SET status = 'cancelled', updated_at = now()
            WHERE session_id = $1 AND status IN ('scheduled', 'ongoing')
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id)
            return _session_from_row(record) if record else None

    async def find_conflicting_session(self, tutor_id: str, class_start: datetime, class_end: datetime,
                                       exclude_session_id: Optional[UUID] = None) -> Optional[ClassSession]:
        """Returns an active session of the tutor overlapping [class_start, class_end)."""
        query = """
            SELECT * FROM ClassSessions
            WHERE tutor_id = $1
              AND status IN ('scheduled', 'ongoing')
              AND class_start < $3 AND class_end > $2
              AND ($4::uuid IS NULL OR session_id <> $4)
            ORDER BY class_start
            LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, tutor_id, class_start, class_end, exclude_session_id)
            return _session_from_row(record) if record else None

    # ===== Lifecycle: status advancement =====

    async def advance_sessions_to_ongoing(self, now: datetime) -> int:
        query = """
            UPDATE ClassSessions
            SET status = 'ongoing', updated_at = now()
            WHERE status = 'scheduled' AND class_start <= $1 AND class_end >= $1;
        """
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, now))

    async def complete_ended_sessions(self, now: datetime) -> int:
        query = """
            UPDATE ClassSessions
            SET status = 'completed', updated_at = now()
            WHERE status IN ('scheduled', 'ongoing') AND class_end < $1;
        """
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, now))

    # ===== Lifecycle: reminders and windows =====

    async def find_sessions_starting_between(self, start: datetime, end: datetime) -> List[ClassSession]:
        query = """
            SELECT * FROM ClassSessions
            WHERE status = 'scheduled'
              AND check_in_notification_sent = FALSE
              AND class_start >= $1 AND class_start <= $2
            ORDER BY class_start;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, start, end)
            return [_session_from_row(record) for record in records]

    async def claim_reminder(self, session_id: UUID) -> bool:
        """Atomically flips check_in_notification_sent. Only one caller wins."""
        query = """
            UPDATE ClassSessions
            SET check_in_notification_sent = TRUE, updated_at = now()
            WHERE session_id = $1 AND status = 'scheduled' AND check_in_notification_sent = FALSE
            RETURNING session_id;
        """
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, session_id) is not None

    async def release_reminder(self, session_id: UUID) -> None:
        query = """
            UPDATE ClassSessions
            SET check_in_notification_sent = FALSE, updated_at = now()
            WHERE session_id = $1;
        """
        async with self._pool.acquire() as connection:
            await connection.execute(query, session_id)

    async def find_sessions_with_open_check_in(self, now: datetime) -> List[ClassSession]:
        query = """
            SELECT * FROM ClassSessions
            WHERE status = 'ongoing' AND check_in_start <= $1 AND check_in_end >= $1
            ORDER BY check_in_end;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, now)
            return [_session_from_row(record) for record in records]

    async def find_sessions_pending_absence(self, now: datetime) -> List[ClassSession]:
        query = """
            SELECT * FROM ClassSessions
            WHERE status <> 'cancelled' AND auto_mark_absent = TRUE AND check_in_end < $1
            ORDER BY check_in_end;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, now)
            return [_session_from_row(record) for record in records]

    async def clear_auto_mark_absent(self, session_id: UUID) -> None:
        query = """
            UPDATE ClassSessions
            SET auto_mark_absent = FALSE, updated_at = now()
            WHERE session_id = $1;
        """
        async with self._pool.acquire() as connection:
            await connection.execute(query, session_id)

    async def find_sessions_to_finalize(self, now: datetime) -> List[ClassSession]:
        query = """
            SELECT * FROM ClassSessions
            WHERE status <> 'cancelled' AND records_finalized = FALSE AND check_out_end < $1
            ORDER BY check_out_end;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, now)
            return [_session_from_row(record) for record in records]

    async def finalize_session(self, session_id: UUID) -> Tuple[bool, int]:
        """
        Completes a session whose check-out window has closed and marks students
        who checked in but never checked out as 'left_early'.

        Returns:
            (finalized, left_early_count). finalized is False when another
            caller already finalized the session or it was cancelled.
        """
        claim_query = """
            UPDATE ClassSessions
            SET status = 'completed', records_finalized = TRUE, updated_at = now()
            WHERE session_id = $1 AND status <> 'cancelled' AND records_finalized = FALSE
            RETURNING session_id;
        """
        left_early_query = """
            UPDATE AttendanceRecords
            SET status = 'left_early', updated_at = now()
            WHERE session_id = $1
              AND status IN ('present', 'late')
              AND check_in_time IS NOT NULL
              AND check_out_time IS NULL;
        """
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                claimed = await connection.fetchval(claim_query, session_id)
                if claimed is None:
                    return False, 0
                result = await connection.execute(left_early_query, session_id)
                return True, _affected_rows(result)

    # ===== Attendance Records =====

    async def seed_attendance_records(self, session_id: UUID, student_ids: List[str]) -> None:
        """Creates an 'absent' record for every enrolled student. Existing records are kept."""
        if not student_ids:
            return
        query = """
            INSERT INTO AttendanceRecords (session_id, student_id, status)
            VALUES ($1, $2, 'absent')
            ON CONFLICT (session_id, student_id) DO NOTHING;
        """
        async with self._pool.acquire() as connection:
            await connection.executemany(query, [(session_id, student_id) for student_id in student_ids])

    async def get_attendance_records(self, session_id: UUID) -> List[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE session_id = $1 ORDER BY student_id;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, session_id)
            return [_record_from_row(record) for record in records]

    async def get_attendance_record(self, session_id: UUID, student_id: str) -> Optional[AttendanceRecord]:
        query = "SELECT * FROM AttendanceRecords WHERE session_id = $1 AND student_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id, student_id)
            return _record_from_row(record) if record else None

    async def mark_absent(self, session_id: UUID, student_id: str, notes: str) -> bool:
        """
        Upserts an auto-marked absence. Returns True only when this call did the
        marking, so concurrent ticks never alert the same absentee twice.
        """
        query = """
            INSERT INTO AttendanceRecords (session_id, student_id, status, auto_marked, notes)
            VALUES ($1, $2, 'absent', TRUE, $3)
            ON CONFLICT (session_id, student_id) DO UPDATE SET
                status = 'absent',
                auto_marked = TRUE,
                notes = EXCLUDED.notes,
                updated_at = now()
            WHERE AttendanceRecords.auto_marked = FALSE
              AND AttendanceRecords.check_in_time IS NULL
              AND AttendanceRecords.status <> ALL($4::text[])
            RETURNING student_id;
        """
        async with self._pool.acquire() as connection:
            marked = await connection.fetchval(query, session_id, student_id, notes, list(PROTECTED_STATUSES))
            return marked is not None

    async def check_in(self, session_id: UUID, student_id: str, details: CheckInDetails) -> Optional[AttendanceRecord]:
        """
        Stamps a check-in. Returns None if the student is already 'present'
        (the unique key turns concurrent attempts into a single winner).
        """
        location = details.location
        query = """
            INSERT INTO AttendanceRecords (
                session_id, student_id, status, check_in_time, check_in_latitude, check_in_longitude,
                check_in_accuracy, check_in_ip, check_in_device_id, verification_method, is_verified, auto_marked
            )
            VALUES ($1, $2, 'present', $3, $4, $5, $6, $7, $8, $9, TRUE, FALSE)
            ON CONFLICT (session_id, student_id) DO UPDATE SET
                status = 'present',
                check_in_time = EXCLUDED.check_in_time,
                check_in_latitude = EXCLUDED.check_in_latitude,
                check_in_longitude = EXCLUDED.check_in_longitude,
                check_in_accuracy = EXCLUDED.check_in_accuracy,
                check_in_ip = EXCLUDED.check_in_ip,
                check_in_device_id = EXCLUDED.check_in_device_id,
                verification_method = EXCLUDED.verification_method,
                is_verified = TRUE,
                auto_marked = FALSE,
                updated_at = now()
            WHERE AttendanceRecords.status <> 'present'
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, session_id, student_id, details.time,
                location.latitude if location else None,
                location.longitude if location else None,
                location.accuracy if location else None,
                details.ip_address, details.device_id, details.verification_method.value,
            )
            return _record_from_row(record) if record else None

    async def check_out(self, session_id: UUID, student_id: str, details: CheckOutDetails) -> Optional[AttendanceRecord]:
        """Stamps a check-out and the duration. None if not checked in or already checked out."""
        location = details.location
        query = """
            UPDATE AttendanceRecords
            SET check_out_time = $3,
                check_out_latitude = $4,
                check_out_longitude = $5,
                check_out_accuracy = $6,
                check_out_ip = $7,
                check_out_device_id = $8,
                duration_minutes = ROUND(EXTRACT(EPOCH FROM ($3 - check_in_time)) / 60)::int,
                updated_at = now()
            WHERE session_id = $1 AND student_id = $2
              AND check_in_time IS NOT NULL
              AND check_out_time IS NULL
              AND check_in_time <= $3
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, session_id, student_id, details.time,
                location.latitude if location else None,
                location.longitude if location else None,
                location.accuracy if location else None,
                details.ip_address, details.device_id,
            )
            return _record_from_row(record) if record else None

    async def apply_manual_override(self, session_id: UUID, student_id: str, status: AttendanceStatus,
                                    override: ManualOverride) -> AttendanceRecord:
        query = """
            INSERT INTO AttendanceRecords (
                session_id, student_id, status, override_by, override_reason, override_time, override_original_status
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (session_id, student_id) DO UPDATE SET
                status = EXCLUDED.status,
                override_by = EXCLUDED.override_by,
                override_reason = EXCLUDED.override_reason,
                override_time = EXCLUDED.override_time,
                override_original_status = EXCLUDED.override_original_status,
                updated_at = now()
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, session_id, student_id, status.value, override.by, override.reason,
                override.timestamp, override.original_status.value,
            )
            return _record_from_row(record)

    async def delete_attendance_records_older_than(self, cutoff: datetime) -> int:
        query = "DELETE FROM AttendanceRecords WHERE created_at < $1;"
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, cutoff))

    # ===== School configuration =====

    async def get_geo_fence_config(self) -> GeoFenceConfig:
        """Returns the singleton configuration, creating the default row if missing."""
        select_query = """
            SELECT geo_fencing_enabled, latitude, longitude, allowed_radius_meters,
                   require_accuracy, max_accuracy_meters
            FROM SchoolConfig WHERE id = 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(select_query)
            if record:
                return GeoFenceConfig(**record)
            defaults = GeoFenceConfig()
            await connection.execute(
                """
                INSERT INTO SchoolConfig (id, geo_fencing_enabled, latitude, longitude, allowed_radius_meters,
                                          require_accuracy, max_accuracy_meters)
                VALUES (1, $1, $2, $3, $4, $5, $6)
                ON CONFLICT (id) DO NOTHING;
                """,
                defaults.geo_fencing_enabled, defaults.latitude, defaults.longitude,
                defaults.allowed_radius_meters, defaults.require_accuracy, defaults.max_accuracy_meters,
            )
            logger.info("SchoolConfig row was missing; default geo-fence configuration created.")
            return defaults
