"""Offer extraction — turn a participant's reply email into a structured offer.

Purpose:
  Send the request, the participant's history and the reply text to the
  completion service and normalize what comes back into typed offer fields
  and line items. Scoring is NOT done here; see services/offer_scoring.py.

Business Rules:
  - Only the latest inbound reply per participant is extracted (supersede, not merge)
  - Currency defaults to the request currency unless explicitly stated
  - Items without a label are dropped; an offer with zero items is an error
  - No response or unparseable output raises ExtractionError (participant skipped)
  - Quantity is never defaulted; a missing quantity stays None

Called by: services/reconciliation.py
Depends on: services/completion_client.py, utils/normalization.py
"""

import json
import re

from loguru import logger

from ..errors import ExtractionError
from ..models import Message, Participant, Request
from ..utils.normalization import (
    clamp_score,
    coerce_bool,
    coerce_int,
    coerce_number,
    normalize_currency,
    parse_lead_time_days,
    parse_warranty_months,
)
from .completion_client import complete_text, safe_json_parse

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 1500
MAX_BODY_CHARS = 6000

SYSTEM_PROMPT = """\
You are a precise data extractor for vendor replies to a procurement request.

Context: A buyer sent a request for proposal listing the items it needs \
(REQUEST_JSON). A vendor (PARTICIPANT_JSON) has replied by email (MESSAGE). \
Extract the vendor's offer as structured data.

Rules:
- Extract every item the vendor quoted, in the order given
- Compare each quoted item with the requested items by label, spec and quantity
- Only include values you can find in the MESSAGE; use null otherwise
- Never invent quantities or prices
- delivery_days is the promised lead time in days
- warranty_months is the offered warranty in months
- specs_clear is false when the vendor's specifications are vague or weaker \
than requested
- missing_items lists labels of requested items the vendor did not quote
- rationale is one or two sentences assessing the offer against the request

Return ONLY valid JSON matching this exact structure:
{
  "total_price": number or null,
  "currency": "USD",
  "delivery_text": "string or null",
  "delivery_days": integer or null,
  "warranty_text": "string or null",
  "warranty_months": integer or null,
  "payment_terms": "string or null",
  "items_match": true|false|null,
  "specs_clear": true|false|null,
  "missing_items": ["requested label", ...],
  "rationale": "string",
  "items": [
    {
      "label": "string",
      "spec": "string or null",
      "quantity": integer or null,
      "unit_price": number or null,
      "total_price": number or null,
      "matches_request": true|false|null,
      "notes": "string or null"
    }
  ]
}"""


def _clean_email_body(body: str) -> str:
    """Strip HTML and excessive whitespace, preserving newlines for tables."""
    if not body:
        return ""
    text = re.sub(r"<br\s*/?>|</p>|</tr>|</li>", "\n", body, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    disclaimer_patterns = [
        r"(?i)this email and any attachments.*?(?=\n\n|\Z)",
        r"(?i)confidentiality notice.*?(?=\n\n|\Z)",
    ]
    for pattern in disclaimer_patterns:
        text = re.sub(pattern, "", text, flags=re.DOTALL)
    return text.strip()


def _str_or_none(raw) -> str | None:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def normalize_offer_payload(raw: dict, default_currency: str = "USD") -> dict:
    """Apply deterministic normalization to a model-extracted offer payload."""
    items_raw = raw.get("items") or []
    if isinstance(items_raw, str):
        try:
            items_raw = json.loads(items_raw)
        except (ValueError, TypeError):
            items_raw = []
    if not isinstance(items_raw, list):
        items_raw = []

    items = []
    for entry in items_raw:
        if not isinstance(entry, dict):
            continue
        label = _str_or_none(entry.get("label"))
        if not label:
            continue
        items.append(
            {
                "label": label,
                "spec": _str_or_none(entry.get("spec") or entry.get("specs")),
                "quantity": coerce_int(entry.get("quantity")),
                "unit_price": coerce_number(entry.get("unit_price")),
                "total_price": coerce_number(entry.get("total_price")),
                "matches_request": coerce_bool(entry.get("matches_request")),
                "notes": _str_or_none(entry.get("notes")),
            }
        )

    delivery_text = _str_or_none(raw.get("delivery_text"))
    delivery_days = coerce_int(raw.get("delivery_days"))
    if delivery_days is None and delivery_text:
        delivery_days = parse_lead_time_days(delivery_text)

    warranty_text = _str_or_none(raw.get("warranty_text"))
    warranty_months = coerce_int(raw.get("warranty_months"))
    if warranty_months is None and warranty_text:
        warranty_months = parse_warranty_months(warranty_text)

    missing = raw.get("missing_items")
    if isinstance(missing, list):
        missing_items = [str(m).strip() for m in missing if str(m).strip()]
    else:
        missing_items = None

    total_price = coerce_number(raw.get("total_price"))
    if total_price is None:
        line_totals = [i["total_price"] for i in items if i["total_price"] is not None]
        if line_totals and len(line_totals) == len(items):
            total_price = sum(line_totals)

    return {
        "total_price": total_price,
        "currency": normalize_currency(raw.get("currency"), default_currency),
        "delivery_text": delivery_text,
        "delivery_days": delivery_days,
        "warranty_text": warranty_text,
        "warranty_months": warranty_months,
        "payment_terms": _str_or_none(raw.get("payment_terms")),
        "items_match": coerce_bool(raw.get("items_match")),
        "specs_clear": coerce_bool(raw.get("specs_clear")),
        "missing_items": missing_items,
        "rationale": _str_or_none(raw.get("rationale") or raw.get("reasoning")),
        "model_score": clamp_score(raw.get("score")),
        "items": items,
    }


def select_latest_messages(messages: list[Message]) -> dict[str, Message]:
    """Latest inbound message per participant_id (by received_at, then created_at)."""
    latest: dict[str, Message] = {}

    def _key(m: Message):
        return (m.received_at or m.created_at, m.created_at)

    for msg in messages:
        if not msg.participant_id:
            continue
        current = latest.get(msg.participant_id)
        if current is None or _key(msg) > _key(current):
            latest[msg.participant_id] = msg
    return latest


def build_request_json(request: Request) -> dict:
    return {
        "title": request.title,
        "summary": request.summary,
        "cap_amount": float(request.cap_amount) if request.cap_amount is not None else None,
        "currency": request.currency,
        "deadline_days": request.deadline_days,
        "payment_terms": request.payment_terms,
        "min_warranty_months": request.min_warranty_months,
        "items": [
            {"label": i.label, "spec": i.spec_text, "quantity": i.quantity}
            for i in request.items
        ],
    }


def build_participant_json(participant: Participant) -> dict:
    return {
        "name": participant.name,
        "rating": float(participant.rating or 0),
        "total_count": participant.total_count or 0,
        "success_count": participant.success_count or 0,
        "on_time_pct": participant.on_time_pct,
    }


class OfferExtractor:
    """Extract one participant's offer from their latest reply."""

    def __init__(self, completion=complete_text):
        self.completion = completion

    def build_prompt(self, request_json: dict, participant_json: dict, body: str) -> str:
        return (
            "REQUEST_JSON:\n" + json.dumps(request_json, default=str)
            + "\n\nPARTICIPANT_JSON:\n" + json.dumps(participant_json, default=str)
            + "\n\nMESSAGE:\n" + body[:MAX_BODY_CHARS]
        )

    async def extract(self, request_json: dict, participant_json: dict, message: str) -> dict:
        """Extract and normalize. Raises ExtractionError when nothing usable came back.

        request_json and participant_json are build_request_json / build_participant_json
        snapshots and message is the reply text, so no session needs to be open.
        """
        cleaned = _clean_email_body(message)
        if not cleaned:
            raise ExtractionError("Reply body is empty")

        text = await self.completion(
            self.build_prompt(request_json, participant_json, cleaned),
            system=SYSTEM_PROMPT,
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=EXTRACTION_MAX_TOKENS,
        )
        if not text:
            raise ExtractionError("Completion service returned no response")

        parsed = safe_json_parse(text)
        if not isinstance(parsed, dict):
            logger.warning("Extraction output not parseable for {}", participant_json.get("name"))
            raise ExtractionError("Completion output was not a JSON object")

        payload = normalize_offer_payload(parsed, request_json.get("currency") or "USD")
        if not payload["items"]:
            raise ExtractionError("Extracted offer has no items")
        payload["raw"] = parsed
        return payload
