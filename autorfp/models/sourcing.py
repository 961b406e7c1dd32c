"""Procurement request models — Request and its requested line items."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus:
    DRAFT = "draft"
    SENT = "sent"
    EVALUATING = "evaluating"
    CLOSED = "closed"

    # Lifecycle order; status only ever moves forward
    ORDER = (DRAFT, SENT, EVALUATING, CLOSED)


class Request(Base):
    """The issuer's structured procurement ask."""

    __tablename__ = "requests"
    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(Text, nullable=False)
    summary = Column(Text)
    cap_amount = Column(Numeric(14, 2))
    currency = Column(String(3), nullable=False, default="USD")
    deadline_days = Column(Integer)
    payment_terms = Column(Text)
    min_warranty_months = Column(Integer)
    status = Column(String(20), nullable=False, default=RequestStatus.DRAFT)
    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    items = relationship(
        "RequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItem.sort_order",
    )
    invitations = relationship("InvitationMapping", back_populates="request")
    offers = relationship("Offer", back_populates="request")

    __table_args__ = (Index("ix_requests_status", "status"),)

    def advance_to(self, status: str) -> bool:
        """Move forward in the lifecycle. Returns False (no-op) on regression."""
        order = RequestStatus.ORDER
        if order.index(status) <= order.index(self.status):
            return False
        self.status = status
        return True


class RequestItem(Base):
    """One requested item (label, spec, quantity) of a Request."""

    __tablename__ = "request_items"
    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(
        String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False
    )
    label = Column(Text, nullable=False)
    spec_text = Column(Text)
    quantity = Column(Integer)
    sort_order = Column(Integer, default=0)
    created_at = Column(UTCDateTime, default=_now)

    request = relationship("Request", back_populates="items")

    __table_args__ = (Index("ix_request_items_request", "request_id"),)
