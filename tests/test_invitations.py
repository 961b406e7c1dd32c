"""Tests for invitation fan-out preparation."""

from unittest.mock import patch

import pytest

from autorfp.errors import ConfigurationError, InvalidTransitionError, NotFoundError, ValidationError
from autorfp.models import InvitationMapping, InviteStatus, Request, RequestStatus
from autorfp.services.invitations import InvitationService
from autorfp.services.notifications import InvitationJob, NotificationChannel


@pytest.fixture()
def channel():
    return NotificationChannel()


@pytest.fixture()
def service(session_factory, channel):
    return InvitationService(session_factory, channel)


def test_prepares_mappings_and_publishes_jobs(db_session, service, channel, test_request, make_participant):
    a, b = make_participant(), make_participant()

    batch = service.send_invitations(test_request.id, [a.id, b.id])

    assert len(batch.prepared) == 2
    assert batch.skipped == []
    mappings = db_session.query(InvitationMapping).all()
    assert {m.participant_id for m in mappings} == {a.id, b.id}
    assert all(m.invite_status == InviteStatus.PENDING for m in mappings)
    assert all(m.reply_token and len(m.reply_token) == 12 for m in mappings)
    assert len({m.reply_token for m in mappings}) == 2
    assert channel.drain() == [InvitationJob(mid) for mid in batch.prepared]
    db_session.expire_all()
    assert db_session.get(Request, test_request.id).status == RequestStatus.SENT


def test_skip_reasons(db_session, service, test_request, make_participant, make_mapping):
    sent = make_participant()
    make_mapping(test_request, sent, token="ALREADY1", status=InviteStatus.SENT)
    no_email = make_participant(email="not-an-email")

    batch = service.send_invitations(test_request.id, [sent.id, no_email.id, "ghost"])

    assert batch.prepared == []
    assert batch.skipped == [
        (sent.id, "already_sent"),
        (no_email.id, "invalid_email"),
        ("ghost", "not_found"),
    ]
    db_session.expire_all()
    assert db_session.get(Request, test_request.id).status == RequestStatus.DRAFT


def test_failed_mapping_is_retried_with_same_token(db_session, service, test_request, test_participant, make_mapping):
    mapping = make_mapping(test_request, test_participant, token="KEEPME1", status=InviteStatus.FAILED)

    batch = service.send_invitations(test_request.id, [test_participant.id])

    assert batch.prepared == [mapping.id]
    db_session.expire_all()
    assert db_session.get(InvitationMapping, mapping.id).reply_token == "KEEPME1"


def test_empty_list_rejected(service, test_request):
    with pytest.raises(ValidationError):
        service.send_invitations(test_request.id, [])


def test_unknown_request(service):
    with pytest.raises(NotFoundError):
        service.send_invitations("missing", ["p1"])


def test_closed_request_refused(db_session, service, test_request, test_participant):
    test_request.status = RequestStatus.CLOSED
    db_session.commit()

    with pytest.raises(InvalidTransitionError):
        service.send_invitations(test_request.id, [test_participant.id])


def test_bad_reply_base_fails_before_writing(db_session, service, channel, test_request, test_participant):
    with patch("autorfp.services.invitations.settings.reply_base_address", "no-at-sign"):
        with pytest.raises(ConfigurationError):
            service.send_invitations(test_request.id, [test_participant.id])

    assert db_session.query(InvitationMapping).count() == 0
    assert channel.qsize() == 0
