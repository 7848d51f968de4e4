from fastapi import APIRouter, Depends, Request
from typing import Optional
from uuid import UUID

from ..models.db_models import Principal
from ..modules.clock import Clock
from ..services.attendance_service import AttendanceService
from ..services.errors import ServiceError
from .schemas.attendance_record import AttendanceRecordResponse, CheckInRequest, CheckOutRequest
from .auth import get_current_principal
from .dependencies import get_attendance_service, get_client_ip, get_clock
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/attendance", tags=["Attendance"])


@router.post("/{session_id}/check-in", response_model=AttendanceRecordResponse, summary="Sign the register of a class session")
@limiter.limit("10/minute")
async def check_in(request: Request, session_id: UUID, check_in_request: CheckInRequest, principal: Principal = Depends(get_current_principal), service: AttendanceService = Depends(get_attendance_service), client_ip: Optional[str] = Depends(get_client_ip), clock: Clock = Depends(get_clock)):
    student_id = check_in_request.student_id or principal.user_id
    try:
        return await service.check_in(
            principal, session_id, student_id, clock.now(),
            ip_address=client_ip, device_id=check_in_request.device_id, location=check_in_request.location
        )
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/{session_id}/check-out", response_model=AttendanceRecordResponse, summary="Sign out of a class session")
@limiter.limit("10/minute")
async def check_out(request: Request, session_id: UUID, check_out_request: CheckOutRequest, principal: Principal = Depends(get_current_principal), service: AttendanceService = Depends(get_attendance_service), client_ip: Optional[str] = Depends(get_client_ip), clock: Clock = Depends(get_clock)):
    student_id = check_out_request.student_id or principal.user_id
    try:
        return await service.check_out(
            principal, session_id, student_id, clock.now(),
            ip_address=client_ip, device_id=check_out_request.device_id, location=check_out_request.location
        )
    except ServiceError as e:
        raise to_http_exception(e)
