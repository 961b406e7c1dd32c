"""Correlation resolver — match inbound envelopes to (request, participant).

Batched: one query per lookup kind for the whole poll batch, never one per
message. Misses are normal mail and are skipped with a reason, not raised.

Called by: services/inbound_poller.py
Depends on: services/reply_routing.py, models
"""

from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..models import InvitationMapping, Message, Participant, Request
from .mailbox import InboundEnvelope
from .reply_routing import find_reply_token


class SkipReason:
    NO_TOKEN = "no_token"
    DUPLICATE = "duplicate"
    UNKNOWN_TOKEN = "unknown_token"
    MISSING_PARTICIPANT = "missing_participant"
    MISSING_REQUEST = "missing_request"
    SENDER_MISMATCH = "sender_mismatch"


@dataclass
class ResolvedReply:
    envelope: InboundEnvelope
    request: Request
    participant: Participant
    mapping: InvitationMapping


@dataclass
class ResolutionResult:
    accepted: list[ResolvedReply] = field(default_factory=list)
    skipped: list[tuple[InboundEnvelope, str]] = field(default_factory=list)


def resolve_batch(db: Session, envelopes: list[InboundEnvelope]) -> ResolutionResult:
    result = ResolutionResult()
    if not envelopes:
        return result

    prefix = settings.reply_prefix
    tokens = {id(env): find_reply_token(env.to_addresses, prefix) for env in envelopes}

    message_ids = {env.message_id for env in envelopes}
    stored = {
        row.message_id
        for row in db.query(Message.message_id).filter(Message.message_id.in_(message_ids)).all()
    }

    wanted_tokens = {t for t in tokens.values() if t}
    mappings = {}
    if wanted_tokens:
        mappings = {
            m.reply_token: m
            for m in db.query(InvitationMapping)
            .filter(InvitationMapping.reply_token.in_(wanted_tokens))
            .all()
        }

    participant_ids = {m.participant_id for m in mappings.values()}
    request_ids = {m.request_id for m in mappings.values()}
    participants = {}
    if participant_ids:
        participants = {
            p.id: p
            for p in db.query(Participant).filter(Participant.id.in_(participant_ids)).all()
        }
    requests = {}
    if request_ids:
        requests = {r.id: r for r in db.query(Request).filter(Request.id.in_(request_ids)).all()}

    seen: set[str] = set()
    for env in envelopes:
        token = tokens[id(env)]
        if not token:
            result.skipped.append((env, SkipReason.NO_TOKEN))
            continue
        if env.message_id in stored or env.message_id in seen:
            result.skipped.append((env, SkipReason.DUPLICATE))
            continue
        mapping = mappings.get(token)
        if mapping is None:
            logger.debug("Unknown reply token {} on uid={}", token, env.uid)
            result.skipped.append((env, SkipReason.UNKNOWN_TOKEN))
            continue
        participant = participants.get(mapping.participant_id)
        if participant is None:
            result.skipped.append((env, SkipReason.MISSING_PARTICIPANT))
            continue
        request = requests.get(mapping.request_id)
        if request is None:
            result.skipped.append((env, SkipReason.MISSING_REQUEST))
            continue
        if (env.from_address or "").lower() != (participant.email or "").strip().lower():
            logger.info(
                "Sender mismatch on uid={}: {} is not the invited participant",
                env.uid, env.from_address,
            )
            result.skipped.append((env, SkipReason.SENDER_MISMATCH))
            continue

        seen.add(env.message_id)
        result.accepted.append(ResolvedReply(env, request, participant, mapping))

    if result.skipped:
        logger.info(
            "Correlation: {} accepted, {} skipped", len(result.accepted), len(result.skipped)
        )
    return result
