"""
routers/mailbox.py — On-demand inbound mailbox poll

Same pass the scheduler runs every poll_interval_minutes.

Called by: main.py (router mount)
Depends on: services/inbound_poller.py
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ..dependencies import get_poller
from ..schemas.pipeline import PollStatsOut
from ..services.inbound_poller import InboundPoller

router = APIRouter(tags=["mailbox"])


@router.post("/api/mailbox/poll", response_model=PollStatsOut)
async def poll_mailbox(poller: InboundPoller = Depends(get_poller)):
    stats = await poller.poll()
    return PollStatsOut(**asdict(stats))
