"""
routers/requests.py — Invitation fan-out for a procurement request

Business Rules:
- Returns as soon as mappings and tokens are committed; sending happens
  in the notification worker
- Participants already invited or without a usable email are reported as skipped

Called by: main.py (router mount)
Depends on: services/invitations.py
"""

from fastapi import APIRouter, Depends
from loguru import logger

from ..dependencies import get_invitation_service
from ..schemas.pipeline import InvitationBatchOut, InvitationCreate, SkippedParticipant
from ..services.invitations import InvitationService

router = APIRouter(tags=["requests"])


@router.post("/api/requests/{request_id}/invitations", response_model=InvitationBatchOut, status_code=202)
async def send_invitations(
    request_id: str,
    body: InvitationCreate,
    service: InvitationService = Depends(get_invitation_service),
):
    """Invite participants to respond to a request."""
    batch = service.send_invitations(request_id, body.participant_ids)
    logger.info("Invitation batch queued for request {}", request_id)
    return InvitationBatchOut(
        request_id=batch.request_id,
        prepared=batch.prepared,
        skipped=[SkippedParticipant(participant_id=p, reason=r) for p, r in batch.skipped],
    )
