"""Offer and offer line item models."""

from sqlalchemy import (
    JSON,
    Boolean,
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


class OfferStatus:
    PENDING = "pending"
    AWARDED = "awarded"
    REJECTED = "rejected"

    TERMINAL = (AWARDED, REJECTED)


class Offer(Base):
    """A participant's structured response to a request.

    One row per (request, participant); reconciliation updates it in place
    and bumps version. awarded and rejected are terminal.
    """

    __tablename__ = "offers"
    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(
        String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False
    )
    participant_id = Column(
        String(36), ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="SET NULL"))
    version = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=OfferStatus.PENDING)

    total_price = Column(Numeric(14, 2))
    currency = Column(String(3), nullable=False, default="USD")
    delivery_text = Column(Text)
    delivery_days = Column(Integer)
    warranty_text = Column(Text)
    warranty_months = Column(Integer)
    payment_terms = Column(Text)
    items_match = Column(Boolean)

    score = Column(Numeric(5, 2))  # 0-100
    score_rationale = Column(Text)
    score_breakdown = Column(JSON)
    extracted = Column(JSON)

    awarded_at = Column(UTCDateTime)
    rejected_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    request = relationship("Request", back_populates="offers")
    participant = relationship("Participant", back_populates="offers")
    message = relationship("Message")
    line_items = relationship(
        "OfferLineItem",
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="OfferLineItem.position",
    )

    __table_args__ = (
        UniqueConstraint("request_id", "participant_id", name="uq_offer_request_participant"),
        Index("ix_offers_request_status", "request_id", "status"),
        Index("ix_offers_participant", "participant_id"),
    )


class OfferLineItem(Base):
    __tablename__ = "offer_line_items"
    id = Column(String(36), primary_key=True, default=_uuid)
    offer_id = Column(
        String(36), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False, default=0)
    label = Column(Text, nullable=False)
    spec_text = Column(Text)
    quantity = Column(Integer)
    unit_price = Column(Numeric(14, 2))
    total_price = Column(Numeric(14, 2))
    matches_request = Column(Boolean)
    notes = Column(Text)
    created_at = Column(UTCDateTime, default=_now)

    offer = relationship("Offer", back_populates="line_items")

    __table_args__ = (Index("ix_offer_line_items_offer", "offer_id"),)
