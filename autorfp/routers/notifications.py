"""
routers/notifications.py — Dead-lettered notification jobs

Failed invitation, award, rejection and rating jobs are kept by the worker
until retried.

Called by: main.py (router mount)
Depends on: services/notifications.py
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ..dependencies import get_notification_worker
from ..schemas.pipeline import DeadLetterOut, RunStatsOut
from ..services.notifications import NotificationWorker

router = APIRouter(tags=["notifications"])


@router.get("/api/notifications/dead-letters", response_model=list[DeadLetterOut])
async def list_dead_letters(worker: NotificationWorker = Depends(get_notification_worker)):
    return [
        DeadLetterOut(kind=d.job.kind, job=asdict(d.job), error=d.error, failed_at=d.failed_at)
        for d in worker.dead_letters
    ]


@router.post("/api/notifications/retry", response_model=RunStatsOut)
async def retry_dead_letters(worker: NotificationWorker = Depends(get_notification_worker)):
    stats = await worker.retry_dead_letters()
    return RunStatsOut(**asdict(stats))
