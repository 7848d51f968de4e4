import asyncio
import logging
from datetime import datetime, timedelta
from typing import Tuple

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.db_models import AttendanceStatus, ClassSession, LifecycleReport, NotificationKind
from ..modules.clock import Clock, default_clock
from ..services.notification_service import NotificationService
from ..tools.notifier import NotificationError

logger = logging.getLogger(__name__)

ABSENCE_NOTE = "Automatically marked absent - did not sign register"
ATTENDED_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.LEFT_EARLY)


async def _store(awaitable):
    return await asyncio.wait_for(awaitable, timeout=settings.STORE_TIMEOUT_SECONDS)


async def _sink(awaitable):
    return await asyncio.wait_for(awaitable, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)


async def _advance_statuses(db_client: AsyncPostgresClient, now: datetime, report: LifecycleReport):
    started = await _store(db_client.advance_sessions_to_ongoing(now))
    completed = await _store(db_client.complete_ended_sessions(now))
    report.transitioned += started + completed
    if started or completed:
        logger.info(f"Status advancement: {started} session(s) now ongoing, {completed} completed.")


async def _send_reminders(db_client: AsyncPostgresClient, notification_service: NotificationService,
                          now: datetime, report: LifecycleReport):
    lookahead = now + timedelta(minutes=settings.REMINDER_LOOKAHEAD_MINUTES)
    sessions = await _store(db_client.find_sessions_starting_between(now, lookahead))

    for session in sessions:
        claimed = False
        try:
            claimed = await _store(db_client.claim_reminder(session.session_id))
            if not claimed:
                continue
            await _sink(notification_service.send_class_reminder(session))
            report.reminders_sent += 1
            logger.info(f"Reminder sent for session {session.session_id} ('{session.title}').")
        except Exception as e:
            report.errors += 1
            logger.error(f"Reminder for session {session.session_id} failed: {e}", exc_info=True)
            if claimed:
                # Give the flag back so the next tick retries while the session is still upcoming.
                try:
                    await _store(db_client.release_reminder(session.session_id))
                except Exception:
                    logger.error(f"Could not release reminder flag of session {session.session_id}.", exc_info=True)


async def _announce_open_registers(db_client: AsyncPostgresClient, redis_client: RedisClient,
                                   notification_service: NotificationService, now: datetime,
                                   report: LifecycleReport):
    sessions = await _store(db_client.find_sessions_with_open_check_in(now))
    kind = NotificationKind.CHECK_IN_AVAILABLE.value

    for session in sessions:
        claimed = False
        try:
            claimed = await _store(redis_client.claim_notification(kind, session.session_id))
            if not claimed:
                continue
            await _sink(notification_service.send_check_in_available(session))
            report.windows_opened += 1
            logger.info(f"Register-open notification sent for session {session.session_id}.")
        except Exception as e:
            report.errors += 1
            logger.error(f"Register-open notification for session {session.session_id} failed: {e}",
                         exc_info=True)
            if claimed:
                try:
                    await _store(redis_client.release_notification(kind, session.session_id))
                except Exception:
                    logger.error(f"Could not release register-open token of session {session.session_id}.",
                                 exc_info=True)


async def _alert_absentee(redis_client: RedisClient, notification_service: NotificationService,
                          session: ClassSession, student_id: str):
    """Absence alerts are best-effort: failures are logged and never block reconciliation."""
    kind = NotificationKind.ABSENCE_ALERT.value
    try:
        if not await _store(redis_client.claim_notification(kind, session.session_id, student_id)):
            return
    except Exception:
        logger.error(f"Could not take absence-alert token for '{student_id}' in {session.session_id}.",
                     exc_info=True)
        return
    try:
        await _sink(notification_service.send_absence_alert(student_id, session))
    except (NotificationError, asyncio.TimeoutError) as e:
        logger.warning(f"Absence alert for '{student_id}' in session {session.session_id} not delivered: {e}")
    except Exception:
        logger.error(f"Unexpected error sending absence alert for '{student_id}'.", exc_info=True)


async def reconcile_session_absences(db_client: AsyncPostgresClient, redis_client: RedisClient,
                                     notification_service: NotificationService,
                                     session: ClassSession) -> Tuple[int, int]:
    """
    Marks every enrolled student who never signed in as absent. Records that
    carry a check-in, including ones finalized as left_early, are left alone.

    The session's auto_mark_absent flag is cleared only after every absentee
    was processed; if any student fails the flag stays set and the next tick
    repairs the remainder.

    Returns:
        (newly_marked, failures)
    """
    records = await _store(db_client.get_attendance_records(session.session_id))
    attended = {r.student_id for r in records if r.status in ATTENDED_STATUSES or r.check_in}
    absentees = [s for s in dict.fromkeys(session.student_ids) if s not in attended]

    marked, failures = 0, 0
    for student_id in absentees:
        try:
            newly_marked = await _store(db_client.mark_absent(session.session_id, student_id, ABSENCE_NOTE))
        except Exception:
            failures += 1
            logger.error(f"Could not mark '{student_id}' absent in session {session.session_id}.", exc_info=True)
            continue
        if newly_marked:
            marked += 1
            await _alert_absentee(redis_client, notification_service, session, student_id)

    if failures:
        logger.warning(f"Session {session.session_id}: {failures} absentee(s) failed; reconciliation will retry.")
        return marked, failures

    await _store(db_client.clear_auto_mark_absent(session.session_id))
    logger.info(f"Session {session.session_id}: {marked} student(s) marked absent, reconciliation closed.")
    return marked, 0


async def _reconcile_absences(db_client: AsyncPostgresClient, redis_client: RedisClient,
                              notification_service: NotificationService, now: datetime,
                              report: LifecycleReport):
    sessions = await _store(db_client.find_sessions_pending_absence(now))
    for session in sessions:
        try:
            marked, failures = await reconcile_session_absences(
                db_client, redis_client, notification_service, session
            )
            report.absentees_marked += marked
            report.errors += failures
        except Exception as e:
            report.errors += 1
            logger.error(f"Absence reconciliation for session {session.session_id} failed: {e}", exc_info=True)


async def _finalize_sessions(db_client: AsyncPostgresClient, now: datetime, report: LifecycleReport):
    sessions = await _store(db_client.find_sessions_to_finalize(now))
    for session in sessions:
        try:
            finalized, left_early = await _store(db_client.finalize_session(session.session_id))
            if finalized:
                report.sessions_finalized += 1
                logger.info(f"Session {session.session_id} finalized; {left_early} student(s) left early.")
        except Exception as e:
            report.errors += 1
            logger.error(f"Finalizing session {session.session_id} failed: {e}", exc_info=True)


async def advance_lifecycle(db_client: AsyncPostgresClient, redis_client: RedisClient,
                            notification_service: NotificationService, now: datetime) -> LifecycleReport:
    """
    One full lifecycle tick.

    Steps run in order because later steps read the statuses and flags the
    earlier ones set. A failing step or session is logged and counted in
    report.errors; the remaining steps and sessions still run. Every write is a
    conditional statement, so running the tick twice for the same `now` sends
    no extra notifications and creates no duplicate records.
    """
    report = LifecycleReport()
    steps = (
        ("status advancement", lambda: _advance_statuses(db_client, now, report)),
        ("class reminders", lambda: _send_reminders(db_client, notification_service, now, report)),
        ("register-open notifications",
         lambda: _announce_open_registers(db_client, redis_client, notification_service, now, report)),
        ("absence reconciliation",
         lambda: _reconcile_absences(db_client, redis_client, notification_service, now, report)),
        ("check-out finalization", lambda: _finalize_sessions(db_client, now, report)),
    )
    for name, step in steps:
        try:
            await step()
        except Exception as e:
            report.errors += 1
            logger.error(f"Lifecycle step '{name}' failed: {e}", exc_info=True)

    logger.info(f"Lifecycle tick at {now.isoformat()}: {report.model_dump()}")
    return report


async def retention_sweep(db_client: AsyncPostgresClient, now: datetime) -> int:
    cutoff = now - timedelta(days=settings.ATTENDANCE_RETENTION_DAYS)
    deleted = await _store(db_client.delete_attendance_records_older_than(cutoff))
    logger.info(f"Retention sweep removed {deleted} attendance record(s) created before {cutoff.date()}.")
    return deleted


# --- Scheduler entry points ---

async def lifecycle_task(db_client: AsyncPostgresClient, redis_client: RedisClient,
                         notification_service: NotificationService, clock: Clock = default_clock):
    logger.info("Running lifecycle_task...")
    await advance_lifecycle(db_client, redis_client, notification_service, clock.now())


async def retention_task(db_client: AsyncPostgresClient, clock: Clock = default_clock):
    try:
        await retention_sweep(db_client, clock.now())
    except Exception as e:
        logger.error(f"Retention sweep failed: {e}", exc_info=True)
