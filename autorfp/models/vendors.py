"""Participant (vendor) and invitation mapping models."""

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base
from .sourcing import _now, _uuid


class Participant(Base):
    """An invited respondent with rolling performance statistics.

    Statistics are only written by the rating recompute after an award or
    reject, always derived from the participant's full offer history.
    """

    __tablename__ = "participants"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    email = Column(String(320), nullable=False, unique=True)

    rating = Column(Numeric(4, 2), nullable=False, default=0)  # 0-10
    total_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    rejection_count = Column(Integer, nullable=False, default=0)
    avg_offer_score = Column(Numeric(5, 2))  # 0-100
    avg_delivery_days = Column(Integer)
    on_time_pct = Column(Integer)  # 0-100
    last_awarded_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    invitations = relationship("InvitationMapping", back_populates="participant")
    offers = relationship("Offer", back_populates="participant")


class InviteStatus:
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class InvitationMapping(Base):
    """One participant's invitation to one request, with its correlation token."""

    __tablename__ = "invitation_mappings"
    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(
        String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False
    )
    participant_id = Column(
        String(36), ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    invite_status = Column(String(20), nullable=False, default=InviteStatus.PENDING)
    invited_at = Column(UTCDateTime, default=_now)
    # Generated lazily before the first send; never cleared or reused
    reply_token = Column(String(64), unique=True)
    last_message_id = Column(String(36), ForeignKey("messages.id", ondelete="SET NULL"))
    last_error = Column(Text)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    request = relationship("Request", back_populates="invitations")
    participant = relationship("Participant", back_populates="invitations")
    last_message = relationship("Message", foreign_keys=[last_message_id])

    __table_args__ = (
        UniqueConstraint("request_id", "participant_id", name="uq_invitation_request_participant"),
        Index("ix_invitation_status", "invite_status"),
    )
