"""Participant rating — 0-10 score recomputed from a participant's full offer history.

Rating components:
  - Success rate (awarded / all offers):            × 4
  - Mean offer score (0-100) / 100:                 × 4
  - On-time share (lead time ≤ 30 days) / 100:      × 2

Rounded to 2 decimals and clamped to [0, 10]. Always derived from every
offer the participant has ever made, never incremented, so repeated
recomputes converge on the same value.

Recomputes for one participant are serialized with an asyncio.Lock, dropped
once no caller holds or waits on it.

Called by: services/notifications.py (rating jobs), routers/participants.py
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..errors import NotFoundError
from ..models import Offer, OfferStatus, Participant

SUCCESS_WEIGHT = 4.0
SCORE_WEIGHT = 4.0
ON_TIME_WEIGHT = 2.0


@dataclass
class OfferHistoryEntry:
    status: str
    score: float | None = None
    delivery_days: int | None = None
    awarded_at: datetime | None = None


@dataclass
class RatingStats:
    rating: float
    total_count: int
    success_count: int
    rejection_count: int
    avg_offer_score: float | None
    avg_delivery_days: int | None
    on_time_pct: int | None
    last_awarded_at: datetime | None


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def compute_participant_rating(
    history: list[OfferHistoryEntry],
    on_time_threshold_days: int | None = None,
) -> RatingStats:
    """Pure calculation — no DB access."""
    threshold = on_time_threshold_days or settings.on_time_threshold_days

    total = len(history)
    success = sum(1 for h in history if h.status == OfferStatus.AWARDED)
    rejected = sum(1 for h in history if h.status == OfferStatus.REJECTED)

    scores = [float(h.score) for h in history if h.score is not None]
    avg_score = sum(scores) / len(scores) if scores else None

    days = [h.delivery_days for h in history if h.delivery_days is not None and h.delivery_days > 0]
    avg_days = _round_half_up(sum(days) / len(days)) if days else None
    on_time = (
        _round_half_up(sum(1 for d in days if d <= threshold) / len(days) * 100) if days else None
    )

    rating = 0.0
    if total:
        rating += success / total * SUCCESS_WEIGHT
    if avg_score is not None:
        rating += avg_score / 100 * SCORE_WEIGHT
    if on_time is not None:
        rating += on_time / 100 * ON_TIME_WEIGHT
    rating = max(0.0, min(10.0, round(rating, 2)))

    awarded_times = [h.awarded_at for h in history if h.awarded_at is not None]

    return RatingStats(
        rating=rating,
        total_count=total,
        success_count=success,
        rejection_count=rejected,
        avg_offer_score=round(avg_score, 2) if avg_score is not None else None,
        avg_delivery_days=avg_days,
        on_time_pct=on_time,
        last_awarded_at=max(awarded_times) if awarded_times else None,
    )


def load_history(db: Session, participant_id: str) -> list[OfferHistoryEntry]:
    rows = (
        db.query(Offer.status, Offer.score, Offer.delivery_days, Offer.awarded_at)
        .filter(Offer.participant_id == participant_id)
        .all()
    )
    return [
        OfferHistoryEntry(
            status=r.status,
            score=float(r.score) if r.score is not None else None,
            delivery_days=r.delivery_days,
            awarded_at=r.awarded_at,
        )
        for r in rows
    ]


class RatingService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        # participant_id → (lock, number of callers holding or waiting on it)
        self._locks: dict[str, list] = {}

    def _checkout(self, participant_id: str) -> asyncio.Lock:
        entry = self._locks.get(participant_id)
        if entry is None:
            entry = self._locks[participant_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        return entry[0]

    def _checkin(self, participant_id: str) -> None:
        entry = self._locks[participant_id]
        entry[1] -= 1
        if entry[1] == 0:
            del self._locks[participant_id]

    async def recompute(self, participant_id: str) -> RatingStats:
        lock = self._checkout(participant_id)
        try:
            return await self._recompute_locked(lock, participant_id)
        finally:
            self._checkin(participant_id)

    async def _recompute_locked(self, lock: asyncio.Lock, participant_id: str) -> RatingStats:
        async with lock:
            with self.session_factory() as db:
                try:
                    participant = db.get(Participant, participant_id)
                    if participant is None:
                        raise NotFoundError("Participant not found", participant_id=participant_id)
                    old = float(participant.rating or 0)
                    stats = compute_participant_rating(load_history(db, participant_id))

                    participant.rating = stats.rating
                    participant.total_count = stats.total_count
                    participant.success_count = stats.success_count
                    participant.rejection_count = stats.rejection_count
                    participant.avg_offer_score = stats.avg_offer_score
                    participant.avg_delivery_days = stats.avg_delivery_days
                    participant.on_time_pct = stats.on_time_pct
                    participant.last_awarded_at = stats.last_awarded_at
                    db.commit()
                except Exception:
                    db.rollback()
                    raise

        logger.info(
            "Participant {} rating {:.2f} → {:.2f} ({}/{} awarded, {} rejected)",
            participant_id, old, stats.rating,
            stats.success_count, stats.total_count, stats.rejection_count,
        )
        return stats


def rating_summary(db: Session, participant_id: str) -> dict:
    """Stored statistics plus live offer counts by status."""
    participant = db.get(Participant, participant_id)
    if participant is None:
        raise NotFoundError("Participant not found", participant_id=participant_id)

    counts = dict(
        db.query(Offer.status, func.count(Offer.id))
        .filter(Offer.participant_id == participant_id)
        .group_by(Offer.status)
        .all()
    )
    return {
        "participant_id": participant.id,
        "name": participant.name,
        "rating": float(participant.rating or 0),
        "total_count": participant.total_count or 0,
        "success_count": participant.success_count or 0,
        "rejection_count": participant.rejection_count or 0,
        "avg_offer_score": float(participant.avg_offer_score) if participant.avg_offer_score is not None else None,
        "avg_delivery_days": participant.avg_delivery_days,
        "on_time_pct": participant.on_time_pct,
        "last_awarded_at": participant.last_awarded_at,
        "offers_by_status": {s: counts.get(s, 0) for s in (OfferStatus.PENDING, OfferStatus.AWARDED, OfferStatus.REJECTED)},
    }
