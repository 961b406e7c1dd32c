"""
conftest.py — Shared Test Fixtures for AutoRFP

Provides an in-memory SQLite database, a session factory the services
receive exactly as they do in production, a fake SMTP mailer, a FastAPI
TestClient wired through build_services, and factory fixtures for the core
models (Request, Participant, InvitationMapping, Message, Offer).

Business Rules:
- All tests run against an isolated in-memory DB (no prod data risk)
- Services get TestSessionLocal as their session_factory
- No test talks to a real IMAP, SMTP or completion server

Called by: all test files via pytest autodiscovery
Depends on: autorfp.models (Base), autorfp.main (build_services)
"""

import os
import uuid

os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ.setdefault("REPLY_BASE_ADDRESS", "procurement@autorfp.test")
os.environ.setdefault("MAIL_FROM", "procurement@autorfp.test")
os.environ.setdefault("SCHEDULER_DISABLED", "1")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from autorfp.models import (
    Base,
    Direction,
    InvitationMapping,
    InviteStatus,
    Message,
    Offer,
    OfferLineItem,
    OfferStatus,
    Participant,
    Request,
    RequestItem,
    RequestStatus,
)

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"  # in-memory, fresh per session

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory():
    return TestSessionLocal


class FakeMailer:
    """Stands in for SmtpMailer. Fails with queued exceptions, then succeeds."""

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.sent = []

    async def send(self, email):
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(email)
        return f"<fake-{len(self.sent)}@autorfp.test>"


def failing_commit(session_factory):
    """Session factory whose commit flushes pending changes, then fails."""

    def _make():
        db = session_factory()

        def _commit():
            db.flush()
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        db.commit = _commit
        return db

    return _make


@pytest.fixture()
def fake_mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture()
def test_request(db_session: Session) -> Request:
    """A draft request with two items and a 10,000 USD cap."""
    req = Request(
        title="Office laptops",
        summary="Laptops and monitors for the new office",
        cap_amount=10000,
        currency="USD",
        deadline_days=30,
        payment_terms="Net 30",
        min_warranty_months=12,
        status=RequestStatus.DRAFT,
    )
    req.items = [
        RequestItem(label="Laptop", spec_text="16GB RAM, 512GB SSD", quantity=20, sort_order=0),
        RequestItem(label="Monitor", spec_text="27-inch 4K", quantity=15, sort_order=1),
    ]
    db_session.add(req)
    db_session.commit()
    return req


@pytest.fixture()
def make_participant(db_session: Session):
    counter = {"n": 0}

    def _make(name=None, email=None, rating=0) -> Participant:
        counter["n"] += 1
        n = counter["n"]
        p = Participant(
            name=name or f"Vendor {n}",
            email=email or f"sales{n}@vendor{n}.test",
            rating=rating,
        )
        db_session.add(p)
        db_session.commit()
        return p

    return _make


@pytest.fixture()
def test_participant(make_participant) -> Participant:
    return make_participant(name="Acme Supplies", email="sales@acme.test")


@pytest.fixture()
def make_mapping(db_session: Session):
    def _make(request, participant, token=None, status=InviteStatus.SENT) -> InvitationMapping:
        m = InvitationMapping(
            request_id=request.id,
            participant_id=participant.id,
            reply_token=token,
            invite_status=status,
        )
        db_session.add(m)
        db_session.commit()
        return m

    return _make


@pytest.fixture()
def make_inbound(db_session: Session):
    def _make(request, participant, body, received_at=None, message_id=None) -> Message:
        msg = Message(
            request_id=request.id,
            participant_id=participant.id,
            direction=Direction.INBOUND,
            subject=f"Re: RFP: {request.title}",
            body_text=body,
            message_id=message_id or f"<{uuid.uuid4().hex}@mail.test>",
            received_at=received_at or datetime.now(timezone.utc),
        )
        db_session.add(msg)
        db_session.commit()
        return msg

    return _make


@pytest.fixture()
def make_offer(db_session: Session):
    def _make(request, participant, status=OfferStatus.PENDING, score=70, total_price=9000,
              delivery_days=14, awarded_at=None) -> Offer:
        offer = Offer(
            request_id=request.id,
            participant_id=participant.id,
            status=status,
            version=1,
            score=score,
            total_price=total_price,
            delivery_days=delivery_days,
            currency=request.currency,
            awarded_at=awarded_at,
        )
        offer.line_items = [OfferLineItem(position=0, label="Laptop", quantity=20, unit_price=450)]
        db_session.add(offer)
        db_session.commit()
        return offer

    return _make


@pytest.fixture()
def app_state(fake_mailer):
    """The FastAPI app with services built on the test DB and a fake mailer."""
    from autorfp.main import app, build_services
    from autorfp.services.delivery import DecisionNoticeDelivery, InvitationDelivery

    build_services(app, TestSessionLocal)
    worker = app.state.notification_worker
    worker.invitations = InvitationDelivery(TestSessionLocal, fake_mailer)
    worker.notices = DecisionNoticeDelivery(TestSessionLocal, fake_mailer)
    return app


@pytest.fixture()
def client(app_state) -> TestClient:
    """TestClient without lifespan: no scheduler, no worker task, no real DB."""
    return TestClient(app_state)
