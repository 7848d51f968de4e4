from fastapi import APIRouter, Depends, status, Request
from typing import List
from uuid import UUID

from ..models.db_models import Principal, Role, SessionParams
from ..modules.clock import Clock
from ..services.errors import ServiceError, ValidationError
from ..services.session_service import SessionService
from .schemas.session import SessionCreateRequest, SessionRescheduleRequest, SessionResponse
from .schemas.attendance_record import AttendanceOverrideRequest, AttendanceRecordResponse
from .auth import get_current_principal, require_roles
from .dependencies import get_session_service, get_clock
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/sessions", tags=["Class Sessions"])

staff_only = require_roles(Role.TUTOR, Role.ADMIN)


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED, summary="Schedule a new class session")
@limiter.limit("20/minute")
async def create_session(request: Request, create_request: SessionCreateRequest, principal: Principal = Depends(staff_only), service: SessionService = Depends(get_session_service), clock: Clock = Depends(get_clock)):
    try:
        tutor_id = create_request.tutor_id or (principal.user_id if principal.role == Role.TUTOR else None)
        if not tutor_id:
            raise ValidationError("tutor_id is required when an admin schedules a class.")
        params = SessionParams(**create_request.model_dump(exclude={"tutor_id"}), tutor_id=tutor_id)
        return await service.create_session(principal, params, clock.now())
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/{session_id}", response_model=SessionResponse, summary="Get a class session")
@limiter.limit("60/minute")
async def get_session(request: Request, session_id: UUID, principal: Principal = Depends(get_current_principal), service: SessionService = Depends(get_session_service)):
    try:
        return await service.get_session(session_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.patch("/{session_id}/schedule", response_model=SessionResponse, summary="Move a class session to a new date or time")
@limiter.limit("20/minute")
async def reschedule_session(request: Request, session_id: UUID, reschedule_request: SessionRescheduleRequest, principal: Principal = Depends(staff_only), service: SessionService = Depends(get_session_service), clock: Clock = Depends(get_clock)):
    try:
        return await service.update_session_time(
            principal, session_id, reschedule_request.scheduled_date,
            reschedule_request.start_time, reschedule_request.end_time, clock.now()
        )
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/{session_id}/cancel", response_model=SessionResponse, summary="Cancel a class session")
@limiter.limit("20/minute")
async def cancel_session(request: Request, session_id: UUID, principal: Principal = Depends(staff_only), service: SessionService = Depends(get_session_service)):
    try:
        return await service.cancel_session(principal, session_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.get("/{session_id}/attendance", response_model=List[AttendanceRecordResponse], summary="List the register of a class session")
@limiter.limit("60/minute")
async def list_session_attendance(request: Request, session_id: UUID, principal: Principal = Depends(staff_only), service: SessionService = Depends(get_session_service)):
    try:
        return await service.list_session_attendance(principal, session_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.put("/{session_id}/attendance/{student_id}", response_model=AttendanceRecordResponse, summary="Manually change a student's attendance status")
@limiter.limit("200/minute")
async def override_attendance(request: Request, session_id: UUID, student_id: str, override_request: AttendanceOverrideRequest, principal: Principal = Depends(staff_only), service: SessionService = Depends(get_session_service), clock: Clock = Depends(get_clock)):
    try:
        return await service.override_attendance(
            principal, session_id, student_id, override_request.status, override_request.reason, clock.now()
        )
    except ServiceError as e:
        raise to_http_exception(e)
