"""Offer reconciliation — upsert one offer per participant from their latest reply.

Three phases, so no transaction ever spans a completion call:
  1. Read (short session): request, inbound replies, existing offers → extraction jobs
  2. Extract (no session): fan out through the Runner; failures are counted, not fatal
  3. Write (one transaction): score the batch, update-in-place or create each
     offer, advance the request to "evaluating"; any error rolls back everything

Business Rules:
- Closed requests are refused before any extraction
- Participants whose offer is awarded or rejected are never re-extracted
- Updating an offer replaces its line items and bumps version by 1
- New offers start at version 1, status "pending"
- Base fields come from the extracted payload; currency defaults to the request's

Called by: routers/offers.py
Depends on: services/offer_extraction.py, services/offer_scoring.py, services/runner.py
"""

import uuid
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..errors import InvalidTransitionError, NotFoundError
from ..models import (
    Direction,
    Message,
    Offer,
    OfferLineItem,
    OfferStatus,
    Request,
    RequestStatus,
)
from .offer_extraction import (
    OfferExtractor,
    build_participant_json,
    build_request_json,
    select_latest_messages,
)
from .offer_scoring import ScoreCandidate, score_batch
from .runner import RunStats, run_bounded


@dataclass
class ExtractionJob:
    participant_id: str
    participant_name: str
    message_id: str
    body: str
    participant_json: dict
    rating: float


@dataclass
class OfferSummary:
    offer_id: str
    participant_id: str
    version: int
    score: float | None


@dataclass
class ReconcileResult:
    request_id: str
    trace_id: str
    created: list[OfferSummary] = field(default_factory=list)
    updated: list[OfferSummary] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)


def _apply_payload(offer: Offer, payload: dict, score, request_currency: str) -> None:
    offer.total_price = payload["total_price"]
    offer.currency = payload.get("currency") or request_currency
    offer.delivery_text = payload["delivery_text"]
    offer.delivery_days = payload["delivery_days"]
    offer.warranty_text = payload["warranty_text"]
    offer.warranty_months = payload["warranty_months"]
    offer.payment_terms = payload["payment_terms"]
    offer.items_match = payload["items_match"]
    offer.score = score.score
    offer.score_breakdown = score.breakdown
    offer.score_rationale = payload["rationale"]
    offer.extracted = payload.get("raw")
    offer.line_items = [
        OfferLineItem(
            position=pos,
            label=item["label"],
            spec_text=item["spec"],
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            total_price=item["total_price"],
            matches_request=item["matches_request"],
            notes=item["notes"],
        )
        for pos, item in enumerate(payload["items"])
    ]


class ReconciliationService:
    def __init__(self, session_factory: sessionmaker, extractor: OfferExtractor | None = None,
                 concurrency: int | None = None):
        self.session_factory = session_factory
        self.extractor = extractor or OfferExtractor()
        self.concurrency = concurrency or settings.fanout_concurrency

    def _prepare(self, request_id: str):
        with self.session_factory() as db:
            request = db.get(Request, request_id)
            if request is None:
                raise NotFoundError("Request not found", request_id=request_id)
            if request.status == RequestStatus.CLOSED:
                raise InvalidTransitionError("Request is closed", request_id=request_id)

            messages = (
                db.query(Message)
                .filter(Message.request_id == request_id, Message.direction == Direction.INBOUND)
                .all()
            )
            offers = {o.participant_id: o for o in request.offers}

            jobs = []
            for participant_id, msg in select_latest_messages(messages).items():
                existing = offers.get(participant_id)
                if existing is not None and existing.status in OfferStatus.TERMINAL:
                    continue
                participant = msg.participant
                jobs.append(
                    ExtractionJob(
                        participant_id=participant_id,
                        participant_name=participant.name,
                        message_id=msg.id,
                        body=msg.body_text or msg.body_html or "",
                        participant_json=build_participant_json(participant),
                        rating=float(participant.rating or 0),
                    )
                )

            job_ids = {j.participant_id for j in jobs}
            baseline = [
                (float(o.total_price) if o.total_price is not None else None, o.delivery_days)
                for o in offers.values()
                if o.status != OfferStatus.REJECTED and o.participant_id not in job_ids
            ]
            return (
                build_request_json(request),
                [i.label for i in request.items],
                float(request.cap_amount) if request.cap_amount is not None else None,
                request.currency,
                jobs,
                baseline,
            )

    async def reconcile(self, request_id: str) -> ReconcileResult:
        trace_id = f"RFP_{uuid.uuid4().hex[:12]}"
        request_json, labels, cap, currency, jobs, baseline = self._prepare(request_id)
        result = ReconcileResult(request_id=request_id, trace_id=trace_id)
        logger.info("[{}] Reconciling request {} | {} replies to extract", trace_id, request_id, len(jobs))

        extracted: dict[str, tuple[ExtractionJob, dict]] = {}

        async def _handle(job: ExtractionJob):
            payload = await self.extractor.extract(request_json, job.participant_json, job.body)
            extracted[job.participant_id] = (job, payload)

        result.stats = await run_bounded(jobs, self.concurrency, _handle)
        result.failed = [j.participant_id for j in jobs if j.participant_id not in extracted]
        if not extracted:
            logger.info("[{}] Nothing extracted for request {}", trace_id, request_id)
            return result

        scores = score_batch(
            [ScoreCandidate(pid, payload, job.rating) for pid, (job, payload) in extracted.items()],
            requested_labels=labels,
            cap_amount=cap,
            existing=baseline,
        )

        with self.session_factory() as db:
            try:
                request = (
                    db.query(Request).filter(Request.id == request_id).with_for_update().first()
                )
                if request is None:
                    raise NotFoundError("Request not found", request_id=request_id)
                if request.status == RequestStatus.CLOSED:
                    raise InvalidTransitionError("Request closed during reconciliation", request_id=request_id)

                offers = {
                    o.participant_id: o
                    for o in db.query(Offer).filter(Offer.request_id == request_id).all()
                }
                changed = []
                for pid, (job, payload) in extracted.items():
                    offer = offers.get(pid)
                    if offer is not None and offer.status in OfferStatus.TERMINAL:
                        continue
                    if offer is None:
                        offer = Offer(
                            request_id=request_id,
                            participant_id=pid,
                            status=OfferStatus.PENDING,
                            version=1,
                        )
                        db.add(offer)
                        bucket = result.created
                    else:
                        offer.version = (offer.version or 0) + 1
                        bucket = result.updated
                    offer.message_id = job.message_id
                    _apply_payload(offer, payload, scores[pid], currency)
                    changed.append((bucket, offer))

                if changed:
                    request.advance_to(RequestStatus.EVALUATING)
                db.flush()
                for bucket, offer in changed:
                    score = float(offer.score) if offer.score is not None else None
                    bucket.append(OfferSummary(offer.id, offer.participant_id, offer.version, score))
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("[{}] Reconcile write failed for request {}", trace_id, request_id)
                raise

        logger.info(
            "[{}] Reconciled request {} | created={} updated={} failed={}",
            trace_id, request_id, len(result.created), len(result.updated), len(result.failed),
        )
        return result
