from __future__ import annotations

import hmac
import logging
import time
import uuid

from fastapi import APIRouter, Depends, Header, HTTPException

from prebooker.application.use_cases.batch_scheduler import BatchSchedulerUseCase
from prebooker.application.use_cases.refresh_sessions import RefreshSessionsUseCase
from prebooker.core.config import settings
from prebooker.wiring.dependencies import get_batch_scheduler, get_refresh_sessions_use_case


router = APIRouter(prefix="/api/cron")
logger = logging.getLogger(__name__)


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured; refusing cron call")
        raise HTTPException(status_code=401, detail="Unauthorized")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Unauthorized cron call")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/prebooking-scheduler", dependencies=[Depends(verify_cron_secret)])
async def run_prebooking_scheduler(
    scheduler: BatchSchedulerUseCase = Depends(get_batch_scheduler),
) -> dict:
    instance_id = uuid.uuid4().hex[:8]
    started = time.monotonic()
    result = await scheduler.tick()
    elapsed_ms = round((time.monotonic() - started) * 1000, 1)
    logger.info("Cron scheduler run", extra={"execution_id": instance_id, "elapsed_ms": elapsed_ms})
    return {
        "success": True,
        "details": {
            "total": result.total,
            "completed": result.completed,
            "failed": result.failed,
            "skipped": result.skipped,
            "errors": result.errors,
            "instanceId": instance_id,
            "executionTimeMs": elapsed_ms,
        },
    }


@router.post("/refresh-sessions", dependencies=[Depends(verify_cron_secret)])
async def run_session_refresh(
    uc: RefreshSessionsUseCase = Depends(get_refresh_sessions_use_case),
) -> dict:
    result = await uc.run()
    return {
        "success": True,
        "total": result.total,
        "refreshed": result.refreshed,
        "skipped": result.skipped,
        "failed": result.failed,
        "loggedOut": result.logged_out,
        "errors": result.errors,
    }
