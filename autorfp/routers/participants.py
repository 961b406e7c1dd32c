"""
routers/participants.py — Participant rating summary

Called by: main.py (router mount)
Depends on: services/participant_rating.py
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.pipeline import RatingSummaryOut
from ..services.participant_rating import rating_summary

router = APIRouter(tags=["participants"])


@router.get("/api/participants/{participant_id}/rating", response_model=RatingSummaryOut)
async def get_participant_rating(participant_id: str, db: Session = Depends(get_db)):
    return RatingSummaryOut(**rating_summary(db, participant_id))
