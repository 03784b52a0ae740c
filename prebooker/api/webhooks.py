from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from prebooker.application.dto.execution_payload import ExecutionPayloadDTO
from prebooker.application.exceptions import InvalidPayloadError, InvalidSecurityTokenError
from prebooker.application.use_cases.execute_prebooking import ExecutePreBookingUseCase, ExecutionReport
from prebooker.wiring.dependencies import get_execute_use_case


router = APIRouter()
logger = logging.getLogger(__name__)


def _report_body(report: ExecutionReport) -> dict:
    body = {
        "success": report.success,
        "prebookingId": report.prebooking_id,
        "executionTimeMs": report.execution_time_ms,
        "status": report.status,
        "message": report.message,
        "bookingId": report.booking_id,
        "alreadyBookedManually": report.already_booked_manually or None,
        "fireLatencyMs": report.fire_latency_ms,
    }
    return {key: value for key, value in body.items() if value is not None}


@router.post("/api/execute-prebooking")
async def execute_prebooking(
    request: Request,
    use_case: ExecutePreBookingUseCase = Depends(get_execute_use_case),
) -> JSONResponse:
    body = await request.body()
    try:
        payload = json.loads(body.decode("utf-8")) if body else None
        dto = ExecutionPayloadDTO.parse(payload)
    except (ValueError, InvalidPayloadError) as e:
        logger.warning("Rejected execution payload", extra={"error": str(e)})
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    try:
        report = await use_case.execute(
            prebooking_id=dto.prebooking_id,
            execute_at_ms=dto.execute_at_ms,
            security_token=dto.security_token,
            user_ref=dto.user_ref,
        )
    except InvalidSecurityTokenError as e:
        return JSONResponse(
            status_code=401,
            content={"success": False, "prebookingId": dto.prebooking_id, "error": str(e)},
        )
    except Exception as e:
        logger.exception("Fatal error in execution webhook", extra={"prebooking_id": dto.prebooking_id, "error": str(e)})
        return JSONResponse(
            status_code=500,
            content={"success": False, "prebookingId": dto.prebooking_id, "error": "Internal server error"},
        )

    status_code = 200 if report.recorded else 500
    return JSONResponse(status_code=status_code, content=_report_body(report))
