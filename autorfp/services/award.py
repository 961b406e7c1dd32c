"""Award / reject state machine for offers.

Offer states: pending → awarded | rejected. Both are terminal.
Request closes exactly when one of its offers is awarded.

award(request, participant), one transaction:
  lock request → refuse closed → find target offer → refuse awarded/rejected
  → target awarded, every non-rejected sibling rejected → request closed → commit
Then, post-commit, publish rating jobs (winner + rejected) and one award
notice plus one auto-rejection notice per sibling. The caller gets its answer
as soon as the commit lands; notice failures only show up in the worker.

reject(request, participant): refuse awarded or already rejected, mark
rejected, commit, publish one manual-rejection notice and one rating job.

Called by: routers/offers.py
Depends on: services/notifications.py, models
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import sessionmaker

from ..errors import InvalidTransitionError, NotFoundError
from ..models import Offer, OfferStatus, Request, RequestStatus
from .notifications import AwardNoticeJob, NotificationChannel, RatingJob, RejectionNoticeJob


@dataclass
class AwardResult:
    request_id: str
    awarded_offer_id: str
    awarded_participant_id: str
    rejected_participant_ids: list[str] = field(default_factory=list)
    trace_id: str = ""


@dataclass
class RejectResult:
    request_id: str
    offer_id: str
    participant_id: str
    trace_id: str = ""


class AwardService:
    def __init__(self, session_factory: sessionmaker, channel: NotificationChannel):
        self.session_factory = session_factory
        self.channel = channel

    def _lock_request(self, db, request_id: str) -> Request:
        request = db.query(Request).filter(Request.id == request_id).with_for_update().first()
        if request is None:
            raise NotFoundError("Request not found", request_id=request_id)
        return request

    def _find_offer(self, db, request_id: str, participant_id: str) -> Offer:
        offer = (
            db.query(Offer)
            .filter(Offer.request_id == request_id, Offer.participant_id == participant_id)
            .with_for_update()
            .first()
        )
        if offer is None:
            raise NotFoundError(
                "Offer not found", request_id=request_id, participant_id=participant_id
            )
        return offer

    def award(self, request_id: str, participant_id: str) -> AwardResult:
        trace_id = f"AWARD_{uuid.uuid4().hex[:12]}"
        now = datetime.now(timezone.utc)

        with self.session_factory() as db:
            try:
                request = self._lock_request(db, request_id)
                if request.status == RequestStatus.CLOSED:
                    raise InvalidTransitionError("Request is already closed", request_id=request_id)

                target = self._find_offer(db, request_id, participant_id)
                if target.status == OfferStatus.AWARDED:
                    raise InvalidTransitionError("Offer is already awarded", offer_id=target.id)
                if target.status == OfferStatus.REJECTED:
                    raise InvalidTransitionError("Offer was rejected", offer_id=target.id)

                siblings = (
                    db.query(Offer)
                    .filter(
                        Offer.request_id == request_id,
                        Offer.id != target.id,
                        Offer.status != OfferStatus.REJECTED,
                    )
                    .with_for_update()
                    .all()
                )

                target.status = OfferStatus.AWARDED
                target.awarded_at = now
                for sibling in siblings:
                    sibling.status = OfferStatus.REJECTED
                    sibling.rejected_at = now
                request.status = RequestStatus.CLOSED
                db.commit()
            except Exception:
                db.rollback()
                raise

            result = AwardResult(
                request_id=request_id,
                awarded_offer_id=target.id,
                awarded_participant_id=participant_id,
                rejected_participant_ids=[s.participant_id for s in siblings],
                trace_id=trace_id,
            )

        jobs = [RatingJob(participant_id)]
        jobs += [RatingJob(pid) for pid in result.rejected_participant_ids]
        jobs.append(AwardNoticeJob(request_id, participant_id))
        jobs += [RejectionNoticeJob(request_id, pid, auto=True) for pid in result.rejected_participant_ids]
        self.channel.publish_many(jobs)

        logger.info(
            "[{}] Request {} awarded to {} | {} siblings rejected",
            trace_id, request_id, participant_id, len(result.rejected_participant_ids),
        )
        return result

    def reject(self, request_id: str, participant_id: str) -> RejectResult:
        trace_id = f"REJECT_{uuid.uuid4().hex[:12]}"

        with self.session_factory() as db:
            try:
                self._lock_request(db, request_id)
                offer = self._find_offer(db, request_id, participant_id)
                if offer.status == OfferStatus.AWARDED:
                    raise InvalidTransitionError("Cannot reject an awarded offer", offer_id=offer.id)
                if offer.status == OfferStatus.REJECTED:
                    raise InvalidTransitionError("Offer is already rejected", offer_id=offer.id)

                offer.status = OfferStatus.REJECTED
                offer.rejected_at = datetime.now(timezone.utc)
                db.commit()
            except Exception:
                db.rollback()
                raise
            offer_id = offer.id

        self.channel.publish_many(
            [
                RejectionNoticeJob(request_id, participant_id, auto=False),
                RatingJob(participant_id),
            ]
        )
        logger.info("[{}] Offer {} on request {} rejected", trace_id, offer_id, request_id)
        return RejectResult(request_id, offer_id, participant_id, trace_id)
