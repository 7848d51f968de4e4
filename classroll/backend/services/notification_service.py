import logging
from datetime import datetime
from typing import List, Iterable

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    ClassSession, Notification, NotificationKind, NotificationPriority, Student
)
from ..modules.clock import school_timezone
from ..tools.notifier import PushNotifier

logger = logging.getLogger(__name__)


def _format_time(instant: datetime) -> str:
    return instant.astimezone(school_timezone()).strftime("%I:%M %p")


def _unique(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(i for i in ids if i))


class NotificationService:
    """
    Builds the attendance notifications and hands them to the push gateway.

    Every method raises NotificationError on delivery failure; the callers
    decide whether to log it or retry on a later tick.
    """
    def __init__(self, db_client: AsyncPostgresClient, notifier: PushNotifier):
        self.db_client = db_client
        self.notifier = notifier

    async def _students(self, student_ids: List[str]) -> List[Student]:
        return await self.db_client.get_students(student_ids)

    async def send_class_reminder(self, session: ClassSession) -> int:
        """Upcoming-class reminder to the enrolled students and their parents."""
        students = await self._students(session.student_ids)
        starts_at = _format_time(session.class_start)
        data = {"session_id": str(session.session_id), "screen": "ClassDetails"}

        notifications = [
            Notification(
                recipient_id=user_id,
                kind=NotificationKind.CLASS_REMINDER,
                title="Class Starting Soon",
                body=f"{session.subject.value}: {session.title} starts at {starts_at}.",
                data=data,
            )
            for user_id in _unique(s.user_id for s in students)
        ]
        notifications += [
            Notification(
                recipient_id=parent_id,
                kind=NotificationKind.CLASS_REMINDER,
                title="Upcoming Class for your Child",
                body=f"{session.subject.value} starts at {starts_at}.",
                data=data,
            )
            for parent_id in _unique(p for s in students for p in s.parent_ids)
        ]
        await self.notifier.send_bulk(notifications)
        return len(notifications)

    async def send_check_in_available(self, session: ClassSession) -> int:
        """'Register is open' to the enrolled students."""
        students = await self._students(session.student_ids)
        notifications = [
            Notification(
                recipient_id=user_id,
                kind=NotificationKind.CHECK_IN_AVAILABLE,
                title="Register Is Now Open!",
                body=f"You can now sign the register for {session.subject.value}.",
                data={"session_id": str(session.session_id), "screen": "Dashboard"},
                priority=NotificationPriority.HIGH,
            )
            for user_id in _unique(s.user_id for s in students)
        ]
        await self.notifier.send_bulk(notifications)
        return len(notifications)

    async def send_attendance_confirmation(self, student: Student, session: ClassSession,
                                           check_in_time: datetime) -> int:
        """Tells the parents their child signed the register."""
        notifications = [
            Notification(
                recipient_id=parent_id,
                kind=NotificationKind.ATTENDANCE_CONFIRMATION,
                title="Attendance Alert",
                body=(f"Safe at school: {student.full_name} checked in for "
                      f"{session.subject.value} at {_format_time(check_in_time)}."),
                data={"student_id": student.student_id, "screen": "ChildSchedule"},
                priority=NotificationPriority.HIGH,
            )
            for parent_id in _unique(student.parent_ids)
        ]
        await self.notifier.send_bulk(notifications)
        return len(notifications)

    async def send_absence_alert(self, student_id: str, session: ClassSession) -> int:
        """Tells the parents their child did not sign the register."""
        students = await self._students([student_id])
        if not students:
            logger.warning(f"Absence alert skipped: student '{student_id}' has no profile.")
            return 0
        student = students[0]
        notifications = [
            Notification(
                recipient_id=parent_id,
                kind=NotificationKind.ABSENCE_ALERT,
                title="Absent Alert",
                body=(f"Urgent: {student.full_name} did not sign the register for "
                      f"{session.subject.value} ({_format_time(session.class_start)})."),
                data={"student_id": student.student_id, "screen": "ChildSchedule"},
                priority=NotificationPriority.HIGH,
            )
            for parent_id in _unique(student.parent_ids)
        ]
        await self.notifier.send_bulk(notifications)
        return len(notifications)
