"""
routers/offers.py — Offer reconciliation and the award/reject decisions

Business Rules:
- reconcile refuses closed requests (409)
- award refuses closed requests and awarded/rejected offers (409)
- reject refuses awarded or already rejected offers (409)
- award/reject answer once the decision commits; notices go out afterwards

Called by: main.py (router mount)
Depends on: services/reconciliation.py, services/award.py
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ..dependencies import get_award_service, get_reconciliation_service
from ..schemas.pipeline import AwardOut, DecisionCreate, ReconcileOut, RejectOut
from ..services.award import AwardService
from ..services.reconciliation import ReconciliationService

router = APIRouter(tags=["offers"])


@router.post("/api/requests/{request_id}/offers/reconcile", response_model=ReconcileOut)
async def reconcile_offers(
    request_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Extract and upsert offers from the latest reply of each participant."""
    result = await service.reconcile(request_id)
    return ReconcileOut(**asdict(result))


@router.post("/api/requests/{request_id}/award", response_model=AwardOut)
async def award_offer(
    request_id: str,
    body: DecisionCreate,
    service: AwardService = Depends(get_award_service),
):
    return AwardOut(**asdict(service.award(request_id, body.participant_id)))


@router.post("/api/requests/{request_id}/reject", response_model=RejectOut)
async def reject_offer(
    request_id: str,
    body: DecisionCreate,
    service: AwardService = Depends(get_award_service),
):
    return RejectOut(**asdict(service.reject(request_id, body.participant_id)))
