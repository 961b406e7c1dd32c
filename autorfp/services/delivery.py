"""Outbound delivery with retry — invitations and award/rejection notices.

Business Rules:
- Transport failures are classified: auth | rate_limit | network | other
- auth aborts at once (retrying cannot succeed without new credentials)
- rate_limit waits min(max_delay, base × 2^(n-1) × factor)
- network/other wait base × 2^(n-1); at most max_retries attempts in total
- An invitation already "sent" is a no-op
- Status flips use a conditional UPDATE (only from pending/failed), so two
  concurrent deliveries of one invitation cannot both mark it
- Every successful send is recorded as an outbound Message; a notice whose
  record fails is logged, not retried (the email already went out)

Called by: services/notifications.py
Depends on: services/mailer.py, services/email_templates.py, services/reply_routing.py
"""

import asyncio
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..errors import DeliveryError, NotFoundError
from ..models import Direction, InvitationMapping, InviteStatus, Message, Participant, Request
from .email_templates import RenderedEmail, render_award, render_invitation, render_rejection
from .mailer import OutboundEmail, SmtpMailer
from .reply_routing import encode_reply_address, generate_reply_token


class ErrorClass:
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    OTHER = "other"


AUTH_CODES = {534, 535}
RATE_LIMIT_CODES = {421, 429, 450, 451, 452}


def classify_transport_error(exc: BaseException) -> str:
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return ErrorClass.AUTH
    code = getattr(exc, "smtp_code", None)
    if code in AUTH_CODES:
        return ErrorClass.AUTH
    if code in RATE_LIMIT_CODES:
        return ErrorClass.RATE_LIMIT
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return ErrorClass.NETWORK
    # SMTPException derives from OSError, so it must be ruled out first
    if isinstance(exc, smtplib.SMTPException):
        return ErrorClass.OTHER
    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return ErrorClass.NETWORK
    return ErrorClass.OTHER


@dataclass
class DeliveryResult:
    success: bool
    attempts: int
    error: str | None = None
    error_class: str | None = None
    message_id: str | None = None
    skipped: bool = False


def retry_delay(attempt: int, error_class: str, base_delay: float | None = None) -> float:
    """Wait before the attempt after `attempt` (1-based)."""
    base = settings.delivery_base_delay if base_delay is None else base_delay
    delay = base * (2 ** (attempt - 1))
    if error_class == ErrorClass.RATE_LIMIT:
        return min(settings.delivery_rate_limit_max_delay, delay * settings.delivery_rate_limit_factor)
    return delay


async def send_with_retry(
    mailer: SmtpMailer,
    email: OutboundEmail,
    max_retries: int | None = None,
    base_delay: float | None = None,
) -> DeliveryResult:
    max_retries = max_retries or settings.delivery_max_retries
    error = None
    error_class = None
    for attempt in range(1, max_retries + 1):
        try:
            message_id = await mailer.send(email)
            return DeliveryResult(success=True, attempts=attempt, message_id=message_id)
        except Exception as e:
            error, error_class = str(e) or e.__class__.__name__, classify_transport_error(e)
            if error_class == ErrorClass.AUTH:
                logger.error("SMTP auth failure sending to {} — not retrying: {}", email.to, e)
                return DeliveryResult(False, attempt, error, error_class)
            if attempt == max_retries:
                break
            delay = retry_delay(attempt, error_class, base_delay)
            logger.warning(
                "Send to {} failed [{}] (attempt {}/{}), retry in {:.1f}s: {}",
                email.to, error_class, attempt, max_retries, delay, e,
            )
            await asyncio.sleep(delay)

    logger.warning("Send to {} gave up after {} attempts: {}", email.to, max_retries, error)
    return DeliveryResult(False, max_retries, error, error_class)


def _record_outbound(db, request_id, participant_id, rendered: RenderedEmail, message_id) -> Message:
    msg = Message(
        request_id=request_id,
        participant_id=participant_id,
        direction=Direction.OUTBOUND,
        subject=rendered.subject,
        body_text=rendered.text,
        body_html=rendered.html,
        message_id=message_id,
        sent_at=datetime.now(timezone.utc),
    )
    db.add(msg)
    db.flush()
    return msg


class InvitationDelivery:
    def __init__(self, session_factory: sessionmaker, mailer: SmtpMailer | None = None):
        self.session_factory = session_factory
        self.mailer = mailer or SmtpMailer()

    async def deliver(self, mapping_id: str) -> DeliveryResult:
        """Send one invitation. Raises DeliveryError once retries are exhausted."""
        with self.session_factory() as db:
            mapping = db.get(InvitationMapping, mapping_id)
            if mapping is None:
                raise NotFoundError("Invitation not found", mapping_id=mapping_id)
            if mapping.invite_status == InviteStatus.SENT:
                return DeliveryResult(success=True, attempts=0, skipped=True)
            if not mapping.reply_token:
                mapping.reply_token = generate_reply_token()
                db.commit()

            request_id, participant_id = mapping.request_id, mapping.participant_id
            rendered = render_invitation(mapping.request, mapping.participant)
            email = OutboundEmail(
                to=mapping.participant.email,
                subject=rendered.subject,
                text=rendered.text,
                html=rendered.html,
                reply_to=encode_reply_address(
                    settings.reply_address_base, mapping.reply_token, settings.reply_prefix
                ),
            )

        result = await send_with_retry(self.mailer, email)

        with self.session_factory() as db:
            try:
                if result.success:
                    msg = _record_outbound(db, request_id, participant_id, rendered, result.message_id)
                    flipped = (
                        db.query(InvitationMapping)
                        .filter(
                            InvitationMapping.id == mapping_id,
                            InvitationMapping.invite_status.in_([InviteStatus.PENDING, InviteStatus.FAILED]),
                        )
                        .update(
                            {
                                InvitationMapping.invite_status: InviteStatus.SENT,
                                InvitationMapping.invited_at: datetime.now(timezone.utc),
                                InvitationMapping.last_message_id: msg.id,
                                InvitationMapping.last_error: None,
                            },
                            synchronize_session=False,
                        )
                    )
                    if not flipped:
                        logger.info("Invitation {} was already marked sent by another delivery", mapping_id)
                else:
                    (
                        db.query(InvitationMapping)
                        .filter(
                            InvitationMapping.id == mapping_id,
                            InvitationMapping.invite_status.in_([InviteStatus.PENDING, InviteStatus.FAILED]),
                        )
                        .update(
                            {
                                InvitationMapping.invite_status: InviteStatus.FAILED,
                                InvitationMapping.last_error: (result.error or "")[:1000],
                            },
                            synchronize_session=False,
                        )
                    )
                db.commit()
            except Exception:
                db.rollback()
                raise

        if not result.success:
            raise DeliveryError(
                "Invitation delivery failed",
                mapping_id=mapping_id,
                attempts=result.attempts,
                error_class=result.error_class,
            )
        return result


class DecisionNoticeDelivery:
    """Award and rejection notices sent after an award/reject commit."""

    def __init__(self, session_factory: sessionmaker, mailer: SmtpMailer | None = None):
        self.session_factory = session_factory
        self.mailer = mailer or SmtpMailer()

    async def _deliver(self, request_id: str, participant_id: str, render) -> DeliveryResult:
        with self.session_factory() as db:
            request = db.get(Request, request_id)
            participant = db.get(Participant, participant_id)
            if request is None or participant is None:
                raise NotFoundError("Request or participant not found",
                                    request_id=request_id, participant_id=participant_id)
            if not participant.email:
                logger.debug("Skipping notice to {} — no email", participant_id)
                return DeliveryResult(success=True, attempts=0, skipped=True)
            rendered = render(request, participant)
            email = OutboundEmail(to=participant.email, subject=rendered.subject, text=rendered.text)

        result = await send_with_retry(self.mailer, email)
        if not result.success:
            raise DeliveryError(
                "Notice delivery failed",
                request_id=request_id,
                participant_id=participant_id,
                attempts=result.attempts,
                error_class=result.error_class,
            )

        # The email is already out; a failed record must not fail the job and trigger a resend
        with self.session_factory() as db:
            try:
                _record_outbound(db, request_id, participant_id, rendered, result.message_id)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    "Notice sent but not recorded request={} participant={} message_id={}",
                    request_id, participant_id, result.message_id,
                )
        return result

    async def deliver_award(self, request_id: str, participant_id: str) -> DeliveryResult:
        return await self._deliver(request_id, participant_id, render_award)

    async def deliver_rejection(self, request_id: str, participant_id: str, auto: bool = False) -> DeliveryResult:
        return await self._deliver(
            request_id, participant_id, lambda r, p: render_rejection(r, p, auto=auto)
        )
