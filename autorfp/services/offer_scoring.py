"""Deterministic offer scoring — relative to the best offer seen for a request.

Score starts at 100 and loses points for:
  - Price above the best seen total:   (price - best) / best × 30
  - Delivery slower than the best seen: (days - best_days) × 1.0
  - Unclear or weaker specifications:   10
  - Each requested item not quoted:     20
  - No quantities or prices at all:     40

Then hard caps: ≤ 50 when price > 120% of the request cap, ≤ 60 when any
requested item is missing; clamp to [0, 100]. Participants with a rating of
1.0 or more get + (rating / 10) × 15, capped at 100.

"Best seen" = minimum over the current batch and the request's existing
non-rejected offers. All constants come from settings (ScoringPolicy).

Called by: services/reconciliation.py
"""

from dataclasses import dataclass, field

from ..config import settings


@dataclass(frozen=True)
class ScoringPolicy:
    price_weight: float = 30.0
    delivery_weight: float = 1.0
    spec_penalty: float = 10.0
    missing_item_penalty: float = 20.0
    vague_penalty: float = 40.0
    over_cap_ratio: float = 1.2
    over_cap_limit: float = 50.0
    missing_items_limit: float = 60.0
    history_threshold: float = 1.0
    history_bonus: float = 15.0

    @classmethod
    def from_settings(cls, s=None) -> "ScoringPolicy":
        s = s or settings
        return cls(
            price_weight=s.score_price_weight,
            delivery_weight=s.score_delivery_weight,
            spec_penalty=s.score_spec_penalty,
            missing_item_penalty=s.score_missing_item_penalty,
            vague_penalty=s.score_vague_penalty,
            over_cap_ratio=s.score_over_cap_ratio,
            over_cap_limit=s.score_over_cap_limit,
            missing_items_limit=s.score_missing_items_limit,
            history_threshold=s.score_history_threshold,
            history_bonus=s.score_history_bonus,
        )


@dataclass
class ScoreCandidate:
    participant_id: str
    payload: dict
    rating: float = 0.0


@dataclass
class ScoreResult:
    score: float
    breakdown: dict = field(default_factory=dict)


def _label_matches(requested: str, offered: str) -> bool:
    a, b = requested.strip().lower(), offered.strip().lower()
    return bool(a) and bool(b) and (a in b or b in a)


def find_missing_items(requested_labels: list[str], payload: dict) -> list[str]:
    """Requested labels the offer does not cover.

    The model's own missing_items list wins when present; otherwise labels
    are matched by case-insensitive containment.
    """
    if payload.get("missing_items") is not None:
        return list(payload["missing_items"])
    offered = [i["label"] for i in payload.get("items", [])]
    return [
        label for label in requested_labels
        if not any(_label_matches(label, o) for o in offered)
    ]


def is_vague(payload: dict) -> bool:
    """True when the reply carries no quantity and no price anywhere."""
    if payload.get("total_price") is not None:
        return False
    for item in payload.get("items", []):
        if item.get("quantity") is not None:
            return False
        if item.get("unit_price") is not None or item.get("total_price") is not None:
            return False
    return True


def best_seen(payloads: list[dict], existing: list[tuple[float | None, int | None]]) -> tuple[float | None, int | None]:
    """(lowest positive total price, lowest delivery days) over batch + existing offers."""
    prices = [p.get("total_price") for p in payloads] + [e[0] for e in existing]
    days = [p.get("delivery_days") for p in payloads] + [e[1] for e in existing]
    prices = [float(x) for x in prices if x is not None and float(x) > 0]
    days = [int(x) for x in days if x is not None]
    return (min(prices) if prices else None, min(days) if days else None)


def score_offer(
    payload: dict,
    *,
    requested_labels: list[str],
    cap_amount: float | None,
    best_price: float | None,
    best_days: int | None,
    rating: float = 0.0,
    policy: ScoringPolicy | None = None,
) -> ScoreResult:
    policy = policy or ScoringPolicy.from_settings()
    breakdown: dict = {}
    score = 100.0

    price = payload.get("total_price")
    if price is not None and best_price:
        penalty = (float(price) - best_price) / best_price * policy.price_weight
        breakdown["price_penalty"] = round(penalty, 2)
        score -= penalty

    days = payload.get("delivery_days")
    if days is not None and best_days is not None:
        penalty = (days - best_days) * policy.delivery_weight
        breakdown["delivery_penalty"] = round(penalty, 2)
        score -= penalty

    if payload.get("specs_clear") is False:
        breakdown["spec_penalty"] = policy.spec_penalty
        score -= policy.spec_penalty

    missing = find_missing_items(requested_labels, payload)
    if missing:
        penalty = policy.missing_item_penalty * len(missing)
        breakdown["missing_items"] = missing
        breakdown["missing_items_penalty"] = penalty
        score -= penalty

    if is_vague(payload):
        breakdown["vague_penalty"] = policy.vague_penalty
        score -= policy.vague_penalty

    if price is not None and cap_amount and float(price) > cap_amount * policy.over_cap_ratio:
        breakdown["over_cap"] = True
        score = min(score, policy.over_cap_limit)

    if missing:
        score = min(score, policy.missing_items_limit)

    score = max(0.0, min(100.0, score))
    breakdown["base"] = round(score, 2)

    if rating >= policy.history_threshold:
        bonus = (rating / 10.0) * policy.history_bonus
        breakdown["history_bonus"] = round(bonus, 2)
        score = min(100.0, score + bonus)

    return ScoreResult(score=round(score, 2), breakdown=breakdown)


def score_batch(
    candidates: list[ScoreCandidate],
    *,
    requested_labels: list[str],
    cap_amount: float | None,
    existing: list[tuple[float | None, int | None]] | None = None,
    policy: ScoringPolicy | None = None,
) -> dict[str, ScoreResult]:
    """Score every candidate against the same best-seen baseline."""
    policy = policy or ScoringPolicy.from_settings()
    best_price, best_days = best_seen([c.payload for c in candidates], existing or [])
    return {
        c.participant_id: score_offer(
            c.payload,
            requested_labels=requested_labels,
            cap_amount=cap_amount,
            best_price=best_price,
            best_days=best_days,
            rating=c.rating,
            policy=policy,
        )
        for c in candidates
    }
