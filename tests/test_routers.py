"""
test_routers.py — HTTP surface of the pipeline via TestClient

Covers: invitations (202 + skips), mailbox poll, reconcile, award/reject,
participant rating, dead letters, and error mapping (400/404/409).
"""

import json
from unittest.mock import AsyncMock

from autorfp.models import OfferStatus, RequestStatus
from autorfp.services.inbound_poller import PollStats
from autorfp.services.notifications import AwardNoticeJob, DeadLetter


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


# ── Invitations ──────────────────────────────────────────────────────


def test_send_invitations_accepted(client, test_request, make_participant):
    a, b = make_participant(), make_participant()

    resp = client.post(
        f"/api/requests/{test_request.id}/invitations",
        json={"participant_ids": [a.id, b.id, a.id, "ghost"]},
    )

    assert resp.status_code == 202
    body = resp.json()
    assert len(body["prepared"]) == 2
    assert body["skipped"] == [{"participant_id": "ghost", "reason": "not_found"}]
    assert client.app.state.channel.qsize() == 2


def test_send_invitations_empty_list_is_400(client, test_request):
    resp = client.post(f"/api/requests/{test_request.id}/invitations", json={"participant_ids": []})
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_send_invitations_unknown_request_is_404(client):
    resp = client.post("/api/requests/missing/invitations", json={"participant_ids": ["p1"]})
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


# ── Mailbox ──────────────────────────────────────────────────────────


def test_poll_mailbox(client, app_state):
    app_state.state.poller.poll = AsyncMock(return_value=PollStats(fetched=3, stored=2, skipped=1, watermark=7))

    resp = client.post("/api/mailbox/poll")

    assert resp.status_code == 200
    assert resp.json() == {"fetched": 3, "stored": 2, "skipped": 1, "watermark": 7}


# ── Offers ───────────────────────────────────────────────────────────


def test_reconcile_creates_offer(client, app_state, test_request, test_participant, make_inbound):
    make_inbound(test_request, test_participant, "20 laptops and 15 monitors for 9000 USD, 2 weeks")
    completion = AsyncMock(return_value=json.dumps({
        "total_price": 9000,
        "delivery_days": 14,
        "specs_clear": True,
        "items": [
            {"label": "Laptop", "quantity": 20, "unit_price": 300},
            {"label": "Monitor", "quantity": 15, "unit_price": 200},
        ],
    }))
    app_state.state.reconciliation_service.extractor.completion = completion

    resp = client.post(f"/api/requests/{test_request.id}/offers/reconcile")

    assert resp.status_code == 200
    body = resp.json()
    assert body["trace_id"].startswith("RFP_")
    assert len(body["created"]) == 1
    assert body["created"][0]["version"] == 1
    assert body["created"][0]["score"] == 100.0
    assert body["stats"] == {"completed": 1, "failed": 0, "total": 1}


def test_reconcile_closed_request_is_409(client, db_session, test_request):
    test_request.status = RequestStatus.CLOSED
    db_session.commit()

    resp = client.post(f"/api/requests/{test_request.id}/offers/reconcile")

    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_transition"


def test_award_and_second_award(client, test_request, make_participant, make_offer):
    a, b = make_participant(), make_participant()
    make_offer(test_request, a)
    make_offer(test_request, b)

    resp = client.post(f"/api/requests/{test_request.id}/award", json={"participant_id": a.id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["awarded_participant_id"] == a.id
    assert body["rejected_participant_ids"] == [b.id]

    again = client.post(f"/api/requests/{test_request.id}/award", json={"participant_id": b.id})
    assert again.status_code == 409


def test_award_blank_participant_is_400(client, test_request):
    resp = client.post(f"/api/requests/{test_request.id}/award", json={"participant_id": "  "})
    assert resp.status_code == 400


def test_reject_offer(client, test_request, test_participant, make_offer):
    offer = make_offer(test_request, test_participant)

    resp = client.post(f"/api/requests/{test_request.id}/reject", json={"participant_id": test_participant.id})

    assert resp.status_code == 200
    assert resp.json()["offer_id"] == offer.id


def test_reject_awarded_offer_is_409(client, test_request, test_participant, make_offer):
    make_offer(test_request, test_participant, status=OfferStatus.AWARDED)
    resp = client.post(f"/api/requests/{test_request.id}/reject", json={"participant_id": test_participant.id})
    assert resp.status_code == 409


# ── Participants / notifications ─────────────────────────────────────


def test_participant_rating(client, test_participant):
    resp = client.get(f"/api/participants/{test_participant.id}/rating")
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Acme Supplies"
    assert body["offers_by_status"] == {"pending": 0, "awarded": 0, "rejected": 0}


def test_participant_rating_unknown_is_404(client):
    assert client.get("/api/participants/missing/rating").status_code == 404


def test_dead_letters_listed_and_retried(client, app_state):
    worker = app_state.state.notification_worker
    worker.dead_letters = [DeadLetter(job=AwardNoticeJob("r1", "p1"), error="smtp down")]
    worker.notices = AsyncMock()
    worker.ratings = AsyncMock()

    listed = client.get("/api/notifications/dead-letters").json()
    assert listed[0]["kind"] == "award_notice"
    assert listed[0]["job"]["participant_id"] == "p1"
    assert listed[0]["error"] == "smtp down"

    resp = client.post("/api/notifications/retry")
    assert resp.json() == {"completed": 1, "failed": 0, "total": 1}
    assert worker.dead_letters == []
    worker.notices.deliver_award.assert_awaited_once_with("r1", "p1")
