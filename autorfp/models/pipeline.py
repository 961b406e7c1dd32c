"""Email pipeline models — stored messages and the durable mailbox cursor."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base
from .sourcing import _now, _uuid


class Direction:
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Message(Base):
    """An email artifact. Inbound rows are never modified after insert."""

    __tablename__ = "messages"
    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(String(36), ForeignKey("requests.id", ondelete="SET NULL"))
    participant_id = Column(String(36), ForeignKey("participants.id", ondelete="SET NULL"))
    direction = Column(String(10), nullable=False)
    subject = Column(Text)
    body_text = Column(Text)
    body_html = Column(Text)
    # Provider-assigned Message-ID, used for inbound dedup
    message_id = Column(String(998), unique=True)
    sent_at = Column(UTCDateTime)
    received_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=_now)

    request = relationship("Request")
    participant = relationship("Participant")

    __table_args__ = (
        Index("ix_messages_request_direction", "request_id", "direction"),
        Index("ix_messages_participant", "participant_id"),
    )


class MailboxCursor(Base):
    """Durable poll watermark: highest mailbox UID already recorded.

    Written in the same transaction as the inbound messages it covers.
    """

    __tablename__ = "mailbox_cursors"
    id = Column(Integer, primary_key=True)
    mailbox = Column(String(255), nullable=False, unique=True)
    last_uid = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)
