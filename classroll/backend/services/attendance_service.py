import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    AttendanceRecord, CheckInDetails, CheckOutDetails, ClassSession, GeoPoint, Principal, Role,
    SessionStatus, Student, VerificationMethod
)
from ..modules.geo_fence import validate_location
from ..tools.network_verifier import normalize_ip, verify_school_network
from ..tools.notifier import NotificationError
from .errors import (
    AccessDeniedError, AlreadyCheckedInError, AlreadyCheckedOutError, AuthorizationError, NotFoundError,
    NotSignedInError, ServiceError, TransientIOError, ValidationError, WindowClosedError
)
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class AttendanceService:
    """
    Student check-in and check-out against a class session's time windows.
    """
    def __init__(self, db_client: AsyncPostgresClient, notification_service: NotificationService,
                 school_public_ip: Optional[str] = None, require_location: Optional[bool] = None):
        self.db_client = db_client
        self.notification_service = notification_service
        self.school_public_ip = school_public_ip if school_public_ip is not None else settings.SCHOOL_PUBLIC_IP
        self.require_location = (
            require_location if require_location is not None else settings.REQUIRE_LOCATION_FOR_CHECK_IN
        )

    async def _load(self, session_id: UUID, student_id: str) -> tuple[ClassSession, Student]:
        try:
            session = await self.db_client.get_class_session(session_id)
            student = await self.db_client.get_student(student_id)
        except Exception as e:
            logger.error(f"Error loading session {session_id} / student '{student_id}'.", exc_info=True)
            raise TransientIOError("A server error occurred while loading the class.") from e
        if not session:
            raise NotFoundError("Class not found.")
        if not student:
            raise NotFoundError("Student not found.")
        return session, student

    @staticmethod
    def _verify_actor(principal: Principal, session: ClassSession, student: Student):
        """Students sign only their own register; the session's tutor and admins may sign for them."""
        if principal.role == Role.STUDENT and principal.user_id in (student.user_id, student.student_id):
            return
        if principal.role == Role.TUTOR and principal.user_id == session.tutor_id:
            return
        if principal.role == Role.ADMIN:
            return
        raise AuthorizationError("You cannot sign the register for this student.")

    async def check_in(self, principal: Principal, session_id: UUID, student_id: str, now: datetime,
                       ip_address: Optional[str] = None, device_id: Optional[str] = None,
                       location: Optional[GeoPoint] = None) -> AttendanceRecord:
        session, student = await self._load(session_id, student_id)
        self._verify_actor(principal, session, student)
        logger.info(f"Student '{student_id}' signing the register for session {session_id}.")

        if session.status == SessionStatus.CANCELLED or not session.is_check_in_available(now):
            logger.warning(f"Check-in rejected for '{student_id}': register for {session_id} is closed.")
            raise WindowClosedError("Register is closed.")

        client_ip = normalize_ip(ip_address)
        if not verify_school_network(self.school_public_ip, client_ip):
            logger.warning(f"Network check FAILED for '{student_id}' - client IP: '{client_ip}'.")
            raise AccessDeniedError("Security Alert: You must be connected to the School WiFi.")
        ip_verified = bool(self.school_public_ip)

        location_verified = False
        if location is not None or self.require_location:
            if location is None:
                raise ValidationError("Location is required to sign the register.")
            try:
                geo_config = await self.db_client.get_geo_fence_config()
            except Exception as e:
                logger.error("Error reading the geo-fence configuration.", exc_info=True)
                raise TransientIOError("A server error occurred while verifying your location.") from e
            result = validate_location(geo_config, location)
            if not result.passed:
                logger.warning(f"Geo-fence check FAILED for '{student_id}': {result.reason} "
                               f"(distance: {result.distance_meters}).")
                if result.reason == "INVALID_COORDINATES":
                    raise ValidationError("Invalid GPS coordinates.")
                raise AccessDeniedError(f"Location check failed: {result.reason}.")
            location_verified = geo_config.geo_fencing_enabled

        if ip_verified and location_verified:
            method = VerificationMethod.BOTH
        elif location_verified:
            method = VerificationMethod.LOCATION
        elif ip_verified:
            method = VerificationMethod.IP_VERIFIED
        else:
            method = VerificationMethod.MANUAL

        details = CheckInDetails(
            time=now,
            location=location,
            ip_address=client_ip or None,
            device_id=device_id or "unknown",
            verification_method=method,
        )
        try:
            record = await self.db_client.check_in(session_id, student_id, details)
        except Exception as e:
            logger.error(f"Error saving check-in of '{student_id}' for session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while signing the register.") from e

        if record is None:
            raise AlreadyCheckedInError("Already signed in.")

        logger.info(f"Student '{student_id}' signed in to session {session_id} ({method.value}).")

        try:
            await self.notification_service.send_attendance_confirmation(student, session, details.time)
        except NotificationError as e:
            logger.warning(f"Attendance confirmation for '{student_id}' could not be sent: {e}")
        except Exception:
            logger.error(f"Unexpected error sending attendance confirmation for '{student_id}'.", exc_info=True)

        return record

    async def check_out(self, principal: Principal, session_id: UUID, student_id: str, now: datetime,
                        ip_address: Optional[str] = None, device_id: Optional[str] = None,
                        location: Optional[GeoPoint] = None) -> AttendanceRecord:
        session, student = await self._load(session_id, student_id)
        self._verify_actor(principal, session, student)

        if session.status == SessionStatus.CANCELLED or not session.is_check_out_available(now):
            raise WindowClosedError("Sign-out is closed.")

        try:
            existing = await self.db_client.get_attendance_record(session_id, student_id)
        except Exception as e:
            logger.error(f"Error reading attendance of '{student_id}' for session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while signing out.") from e

        if not existing or not existing.check_in:
            raise NotSignedInError("Not signed in.")
        if existing.check_out:
            raise AlreadyCheckedOutError("Already signed out.")
        if now < existing.check_in.time:
            raise ValidationError("Sign-out time cannot be before the sign-in time.")

        details = CheckOutDetails(
            time=now,
            location=location,
            ip_address=normalize_ip(ip_address) or None,
            device_id=device_id,
        )
        try:
            record = await self.db_client.check_out(session_id, student_id, details)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error saving check-out of '{student_id}' for session {session_id}.", exc_info=True)
            raise TransientIOError("A server error occurred while signing out.") from e

        if record is None:
            # A concurrent request stamped the check-out first.
            raise AlreadyCheckedOutError("Already signed out.")

        logger.info(f"Student '{student_id}' signed out of session {session_id} "
                    f"after {record.duration_minutes} minutes.")
        return record
