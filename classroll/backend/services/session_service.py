import logging
from datetime import date, datetime, tzinfo
from typing import List, Optional
from uuid import UUID, uuid4

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    AttendanceRecord, AttendanceStatus, ClassSession, ManualOverride, Principal, Role,
    SessionParams, SessionStatus, can_transition
)
from ..modules.clock import school_timezone
from ..modules.time_window import calculate_windows, validate_schedule_times
from .errors import (
    AuthorizationError, NotFoundError, ServiceError, StateConflictError, TransientIOError, ValidationError
)

logger = logging.getLogger(__name__)


class SessionService:
    """
    Creates, reschedules and cancels class sessions and applies manual
    attendance overrides. Window instants are always derived here, never
    accepted from the caller.
    """
    def __init__(self, db_client: AsyncPostgresClient, tz: Optional[tzinfo] = None):
        self.db_client = db_client
        self.tz = tz or school_timezone()

    # --- Guards ---

    @staticmethod
    def _verify_can_schedule(principal: Principal, tutor_id: str):
        if principal.role == Role.ADMIN:
            return
        if principal.role == Role.TUTOR and principal.user_id == tutor_id:
            return
        raise AuthorizationError("Only admins or the owning tutor can manage this class schedule.")

    def _verify_not_in_past(self, scheduled_date: date, now: datetime):
        if scheduled_date < now.astimezone(self.tz).date():
            raise ValidationError("Cannot schedule classes in the past.")

    async def _get_owned_session(self, principal: Principal, session_id: UUID) -> ClassSession:
        session = await self.db_client.get_class_session(session_id)
        if not session:
            raise NotFoundError(f"Class session ({session_id}) not found.")
        self._verify_can_schedule(principal, session.tutor_id)
        return session

    async def _ensure_no_conflict(self, tutor_id: str, class_start: datetime, class_end: datetime,
                                  exclude_session_id: Optional[UUID] = None):
        conflict = await self.db_client.find_conflicting_session(
            tutor_id, class_start, class_end, exclude_session_id
        )
        if conflict:
            raise StateConflictError(
                f"Schedule conflict with '{conflict.title}' "
                f"({conflict.scheduled_date} {conflict.start_time}-{conflict.end_time})."
            )

    # --- Operations ---

    async def create_session(self, principal: Principal, params: SessionParams, now: datetime) -> ClassSession:
        self._verify_can_schedule(principal, params.tutor_id)
        validate_schedule_times(params.start_time, params.end_time)
        self._verify_not_in_past(params.scheduled_date, now)

        student_ids = list(dict.fromkeys(params.student_ids))
        if len(student_ids) > params.max_students:
            raise ValidationError(
                f"Cannot assign more than {params.max_students} students to a class (got {len(student_ids)})."
            )

        windows = calculate_windows(params.scheduled_date, params.start_time, params.end_time, self.tz)
        new_session = ClassSession(
            session_id=uuid4(),
            created_by=principal.user_id,
            **params.model_dump(exclude={"student_ids"}),
            student_ids=student_ids,
            **windows.model_dump(),
        )

        try:
            await self._ensure_no_conflict(params.tutor_id, windows.class_start, windows.class_end)
            saved = await self.db_client.add_class_session(new_session)
            await self.db_client.seed_attendance_records(saved.session_id, saved.student_ids)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error creating class session for tutor '{params.tutor_id}'.", exc_info=True)
            raise TransientIOError("A server error occurred while creating the class session.") from e

        logger.info(f"Class session {saved.session_id} created for tutor '{saved.tutor_id}' "
                    f"with {len(saved.student_ids)} students.")
        return saved

    async def update_session_time(self, principal: Principal, session_id: UUID, scheduled_date: date,
                                  start_time: str, end_time: str, now: datetime) -> ClassSession:
        validate_schedule_times(start_time, end_time)
        self._verify_not_in_past(scheduled_date, now)

        try:
            session = await self._get_owned_session(principal, session_id)
            if session.is_terminal:
                raise StateConflictError(f"Cannot modify a {session.status.value} class.")

            windows = calculate_windows(scheduled_date, start_time, end_time, self.tz)
            await self._ensure_no_conflict(session.tutor_id, windows.class_start, windows.class_end, session_id)

            updated = await self.db_client.update_class_session_schedule(
                session_id, scheduled_date, start_time, end_time, windows
            )
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error rescheduling class session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while rescheduling the class session.") from e

        if not updated:
            # The lifecycle job finished the session between the read and the write.
            raise StateConflictError("The class session was completed or cancelled in the meantime.")
        logger.info(f"Class session {session_id} moved to {scheduled_date} {start_time}-{end_time}.")
        return updated

    async def cancel_session(self, principal: Principal, session_id: UUID) -> ClassSession:
        try:
            session = await self._get_owned_session(principal, session_id)
            if session.status == SessionStatus.CANCELLED:
                return session
            if not can_transition(session.status, SessionStatus.CANCELLED):
                raise StateConflictError(f"Cannot cancel a {session.status.value} class.")
            cancelled = await self.db_client.cancel_class_session(session_id)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error cancelling class session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while cancelling the class session.") from e

        if not cancelled:
            raise StateConflictError("The class session was completed in the meantime.")
        logger.info(f"Class session {session_id} cancelled by '{principal.user_id}'.")
        return cancelled

    async def get_session(self, session_id: UUID) -> ClassSession:
        try:
            session = await self.db_client.get_class_session(session_id)
        except Exception as e:
            logger.error(f"Error reading class session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while reading the class session.") from e
        if not session:
            raise NotFoundError(f"Class session ({session_id}) not found.")
        return session

    async def list_session_attendance(self, principal: Principal, session_id: UUID) -> List[AttendanceRecord]:
        try:
            await self._get_owned_session(principal, session_id)
            return await self.db_client.get_attendance_records(session_id)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error listing attendance for session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while listing attendance.") from e

    async def override_attendance(self, principal: Principal, session_id: UUID, student_id: str,
                                  status: AttendanceStatus, reason: str, now: datetime) -> AttendanceRecord:
        """Lets the session's tutor or an admin set a student's status by hand."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for a manual attendance override.")

        try:
            session = await self._get_owned_session(principal, session_id)
            if session.status == SessionStatus.CANCELLED:
                raise StateConflictError("Cannot change attendance for a cancelled class.")
            if student_id not in session.student_ids:
                raise NotFoundError(f"Student '{student_id}' is not enrolled in this class.")

            existing = await self.db_client.get_attendance_record(session_id, student_id)
            original_status = existing.status if existing else AttendanceStatus.ABSENT
            override = ManualOverride(
                by=principal.user_id,
                reason=reason.strip(),
                timestamp=now,
                original_status=original_status,
            )
            record = await self.db_client.apply_manual_override(session_id, student_id, status, override)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error overriding attendance of '{student_id}' in session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while updating the attendance record.") from e

        logger.info(f"Attendance of '{student_id}' in session {session_id} changed "
                    f"{original_status.value} -> {status.value} by '{principal.user_id}'.")
        return record
