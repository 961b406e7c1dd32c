"""Invitation fan-out — prepare mappings and tokens, then hand off to the worker.

Business Rules:
- Reply base address is validated before anything is written
- One transaction: create missing mappings, generate tokens for mappings
  that have none, move the request draft → sent
- Participants already "sent" or without a usable email are skipped
- Tokens are persisted before any send so a reply can never outrun its mapping
- One InvitationJob per prepared mapping is published after commit

Called by: routers/requests.py
Depends on: services/reply_routing.py, services/notifications.py
"""

import re
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models import InvitationMapping, InviteStatus, Participant, Request, RequestStatus
from .notifications import InvitationJob, NotificationChannel
from .reply_routing import encode_reply_address, generate_reply_token

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class InvitationBatch:
    request_id: str
    prepared: list[str] = field(default_factory=list)  # mapping ids
    skipped: list[tuple[str, str]] = field(default_factory=list)  # (participant_id, reason)


class InvitationService:
    def __init__(self, session_factory: sessionmaker, channel: NotificationChannel):
        self.session_factory = session_factory
        self.channel = channel

    def send_invitations(self, request_id: str, participant_ids: list[str]) -> InvitationBatch:
        if not participant_ids:
            raise ValidationError("participant_ids must not be empty")
        # Raises ConfigurationError before any write when the base is unusable
        encode_reply_address(settings.reply_address_base, "check", settings.reply_prefix)

        batch = InvitationBatch(request_id=request_id)
        with self.session_factory() as db:
            try:
                request = db.query(Request).filter(Request.id == request_id).with_for_update().first()
                if request is None:
                    raise NotFoundError("Request not found", request_id=request_id)
                if request.status == RequestStatus.CLOSED:
                    raise InvalidTransitionError("Request is closed", request_id=request_id)

                wanted = list(dict.fromkeys(participant_ids))
                participants = {
                    p.id: p for p in db.query(Participant).filter(Participant.id.in_(wanted)).all()
                }
                mappings = {
                    m.participant_id: m
                    for m in db.query(InvitationMapping)
                    .filter(
                        InvitationMapping.request_id == request_id,
                        InvitationMapping.participant_id.in_(wanted),
                    )
                    .all()
                }

                for pid in wanted:
                    participant = participants.get(pid)
                    if participant is None:
                        batch.skipped.append((pid, "not_found"))
                        continue
                    if not participant.email or not _EMAIL_RE.match(participant.email.strip()):
                        batch.skipped.append((pid, "invalid_email"))
                        continue
                    mapping = mappings.get(pid)
                    if mapping is not None and mapping.invite_status == InviteStatus.SENT:
                        batch.skipped.append((pid, "already_sent"))
                        continue
                    if mapping is None:
                        mapping = InvitationMapping(
                            request_id=request_id,
                            participant_id=pid,
                            invite_status=InviteStatus.PENDING,
                        )
                        db.add(mapping)
                    if not mapping.reply_token:
                        mapping.reply_token = generate_reply_token()
                    db.flush()
                    batch.prepared.append(mapping.id)

                if batch.prepared:
                    request.advance_to(RequestStatus.SENT)
                db.commit()
            except Exception:
                db.rollback()
                raise

        self.channel.publish_many(InvitationJob(mid) for mid in batch.prepared)
        logger.info(
            "Invitations for request {} | prepared={} skipped={}",
            request_id, len(batch.prepared), len(batch.skipped),
        )
        return batch
