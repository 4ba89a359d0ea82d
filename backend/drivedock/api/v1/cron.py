"""Scheduler API router.

Endpoints called by the external scheduler, authenticated with the
CRON_SECRET bearer token. GET is a liveness probe for the scheduler's
configuration check; POST runs one batch.

Endpoints:
- GET/POST /cron/completion-notices — completion notice sweep
- GET/POST /cron/cleanup-expired — expired onboarding cleanup
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from drivedock.api.deps import CronAuth, DbSession
from drivedock.core.batching import batch_limit_param
from drivedock.core.responses import DataResponse
from drivedock.services.completion_notices import run_completion_notice_sweep
from drivedock.services.onboarding_cleanup import cleanup_expired_trackers

router = APIRouter(dependencies=[CronAuth])

BatchLimit = Annotated[int | None, Depends(batch_limit_param)]


@router.get("/completion-notices")
async def completion_notices_health() -> DataResponse[dict]:
    """Confirm the scheduler can reach the sweep with its secret."""
    return DataResponse(data={"ok": True, "job": "completion-notices"})


@router.post("/completion-notices")
async def run_completion_notices(limit: BatchLimit, db: DbSession) -> DataResponse[dict]:
    """Run one completion notice sweep.

    Per-item failures are recorded on the tracker and counted in
    ``failed``; the endpoint itself does not fail for them.
    """
    result = await run_completion_notice_sweep(db, limit=limit)
    return DataResponse(data=result.to_dict())


@router.get("/cleanup-expired")
async def cleanup_expired_health() -> DataResponse[dict]:
    """Confirm the scheduler can reach the cleanup with its secret."""
    return DataResponse(data={"ok": True, "job": "cleanup-expired"})


@router.post("/cleanup-expired")
async def run_cleanup_expired(limit: BatchLimit, db: DbSession) -> DataResponse[dict]:
    """Delete one batch of expired, incomplete trackers.

    Responds 500 CLEANUP_ERROR when the batch transaction aborts; nothing
    is deleted in that case and the next run retries.
    """
    result = await cleanup_expired_trackers(db, limit=limit)
    return DataResponse(data=result.to_dict())
