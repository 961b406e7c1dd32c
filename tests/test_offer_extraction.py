"""Tests for offer extraction — prompt, normalization, error paths."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from autorfp.errors import ExtractionError
from autorfp.models import Message
from autorfp.services.offer_extraction import (
    OfferExtractor,
    build_participant_json,
    build_request_json,
    normalize_offer_payload,
    select_latest_messages,
)

REQUEST_JSON = {"title": "Office laptops", "currency": "EUR", "items": [{"label": "Laptop"}]}
PARTICIPANT_JSON = {"name": "Acme Supplies", "rating": 7.5}

GOOD_OUTPUT = {
    "total_price": "€9,000",
    "currency": None,
    "delivery_text": "2-3 weeks",
    "delivery_days": None,
    "warranty_text": "2 years",
    "items_match": "yes",
    "specs_clear": True,
    "missing_items": [],
    "rationale": "Matches the request.",
    "items": [
        {"label": "Laptop", "spec": "16GB/512GB", "quantity": "20 pcs", "unit_price": "450", "total_price": 9000},
        {"label": "", "quantity": 1},
    ],
}


class FakeCompletion:
    def __init__(self, response):
        self.response = response
        self.calls = []

    async def __call__(self, prompt, **kwargs):
        self.calls.append((prompt, kwargs))
        return self.response


def test_normalize_coerces_fields():
    payload = normalize_offer_payload(GOOD_OUTPUT, "EUR")

    assert payload["total_price"] == 9000.0
    assert payload["currency"] == "EUR"
    assert payload["delivery_days"] == 17
    assert payload["warranty_months"] == 24
    assert payload["items_match"] is True
    assert payload["missing_items"] == []
    assert len(payload["items"]) == 1
    item = payload["items"][0]
    assert item["quantity"] == 20
    assert item["unit_price"] == 450.0


def test_normalize_never_defaults_quantity():
    payload = normalize_offer_payload({"items": [{"label": "Laptop", "unit_price": 450}]})
    assert payload["items"][0]["quantity"] is None
    assert payload["missing_items"] is None


def test_normalize_sums_line_totals_when_total_missing():
    raw = {"items": [{"label": "A", "total_price": 100}, {"label": "B", "total_price": "250.50"}]}
    assert normalize_offer_payload(raw)["total_price"] == 350.5


def test_normalize_does_not_sum_partial_totals():
    raw = {"items": [{"label": "A", "total_price": 100}, {"label": "B"}]}
    assert normalize_offer_payload(raw)["total_price"] is None


def test_normalize_accepts_items_as_json_string():
    raw = {"items": json.dumps([{"label": "Laptop", "quantity": 3}])}
    assert normalize_offer_payload(raw)["items"][0]["quantity"] == 3


@pytest.mark.asyncio
async def test_extract_returns_normalized_payload():
    completion = FakeCompletion(json.dumps(GOOD_OUTPUT))
    extractor = OfferExtractor(completion=completion)

    payload = await extractor.extract(REQUEST_JSON, PARTICIPANT_JSON, "<p>We offer 20 laptops</p>")

    assert payload["total_price"] == 9000.0
    assert payload["raw"]["rationale"] == "Matches the request."
    prompt, kwargs = completion.calls[0]
    assert "REQUEST_JSON:" in prompt and "PARTICIPANT_JSON:" in prompt
    assert "We offer 20 laptops" in prompt and "<p>" not in prompt
    assert kwargs["temperature"] == 0.1


@pytest.mark.asyncio
async def test_extract_handles_fenced_json():
    fenced = "Here you go:\n```json\n" + json.dumps(GOOD_OUTPUT) + "\n```"
    payload = await OfferExtractor(completion=FakeCompletion(fenced)).extract(
        REQUEST_JSON, PARTICIPANT_JSON, "offer"
    )
    assert payload["items"][0]["label"] == "Laptop"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response,body",
    [
        (None, "offer"),
        ("not json at all", "offer"),
        ("[1, 2]", "offer"),
        (json.dumps({"items": []}), "offer"),
        (json.dumps(GOOD_OUTPUT), "   "),
    ],
)
async def test_extract_errors(response, body):
    with pytest.raises(ExtractionError):
        await OfferExtractor(completion=FakeCompletion(response)).extract(REQUEST_JSON, PARTICIPANT_JSON, body)


def test_select_latest_messages_picks_newest_per_participant():
    now = datetime.now(timezone.utc)
    old = Message(participant_id="p1", received_at=now - timedelta(days=1), created_at=now)
    new = Message(participant_id="p1", received_at=now, created_at=now)
    other = Message(participant_id="p2", received_at=now, created_at=now)
    orphan = Message(participant_id=None, received_at=now, created_at=now)

    latest = select_latest_messages([new, old, other, orphan])

    assert latest == {"p1": new, "p2": other}


def test_build_json_snapshots(test_request, test_participant):
    req = build_request_json(test_request)
    assert req["cap_amount"] == 10000.0
    assert [i["label"] for i in req["items"]] == ["Laptop", "Monitor"]
    assert build_participant_json(test_participant)["name"] == "Acme Supplies"
