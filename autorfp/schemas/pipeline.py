"""
schemas/pipeline.py — Pydantic models for the procurement pipeline endpoints

Request bodies and response shapes for invitations, mailbox polling,
offer reconciliation, award/reject, ratings and the notification worker.

Business Rules:
- participant_ids must be a non-empty list; duplicates are dropped, order kept
- participant_id on award/reject must not be blank
- Scores are 0-100, ratings 0-10

Called by: routers/requests.py, routers/mailbox.py, routers/offers.py,
           routers/participants.py, routers/notifications.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ── Invitations ──────────────────────────────────────────────────────


class InvitationCreate(BaseModel):
    participant_ids: list[str] = Field(min_length=1, max_length=500)

    @field_validator("participant_ids")
    @classmethod
    def dedupe_ids(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip() for s in v if s and s.strip()]
        if not cleaned:
            raise ValueError("participant_ids must contain at least one id")
        return list(dict.fromkeys(cleaned))


class SkippedParticipant(BaseModel):
    participant_id: str
    reason: str


class InvitationBatchOut(BaseModel):
    request_id: str
    prepared: list[str] = []
    skipped: list[SkippedParticipant] = []


# ── Mailbox ──────────────────────────────────────────────────────────


class PollStatsOut(BaseModel):
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    watermark: int = 0


# ── Offers ───────────────────────────────────────────────────────────


class OfferSummaryOut(BaseModel):
    offer_id: str
    participant_id: str
    version: int
    score: float | None = Field(default=None, ge=0, le=100)


class RunStatsOut(BaseModel):
    completed: int = 0
    failed: int = 0
    total: int = 0


class ReconcileOut(BaseModel):
    request_id: str
    trace_id: str
    created: list[OfferSummaryOut] = []
    updated: list[OfferSummaryOut] = []
    failed: list[str] = []
    stats: RunStatsOut


class DecisionCreate(BaseModel):
    participant_id: str

    @field_validator("participant_id")
    @classmethod
    def id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("participant_id must not be blank")
        return v


class AwardOut(BaseModel):
    request_id: str
    awarded_offer_id: str
    awarded_participant_id: str
    rejected_participant_ids: list[str] = []
    trace_id: str


class RejectOut(BaseModel):
    request_id: str
    offer_id: str
    participant_id: str
    trace_id: str


# ── Participants ─────────────────────────────────────────────────────


class RatingSummaryOut(BaseModel):
    participant_id: str
    name: str
    rating: float = Field(ge=0, le=10)
    total_count: int = 0
    success_count: int = 0
    rejection_count: int = 0
    avg_offer_score: float | None = None
    avg_delivery_days: int | None = None
    on_time_pct: int | None = None
    last_awarded_at: datetime | None = None
    offers_by_status: dict[str, int] = {}


# ── Notifications ────────────────────────────────────────────────────


class DeadLetterOut(BaseModel):
    kind: str
    job: dict
    error: str
    failed_at: datetime
