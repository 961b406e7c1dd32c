"""Deterministic normalization — pure Python, no AI.

Coerces values a completion model returns for an offer into typed fields:
  - Numbers: "$1,234.56" → 1234.56, "1.5k" → 1500.0
  - Integers: "12.6" → 13 (rounded)
  - Booleans: "yes" / "false" / 1 → True / False / True, anything else → None
  - Currencies: "€" → "EUR", "usd" → "USD", unknown → default
  - Lead times: "4-6 weeks" → 35 (days, midpoint)
  - Warranty: "2 years" → 24 (months)

Design: Prefer less data if it means better data. Return None for ambiguous values.
"""

import math
import re
from typing import Any

# ── Currency ──────────────────────────────────────────────────────────

# Longest symbols first so "HK$" is not read as "$"
_CURRENCY_SYMBOLS = {
    "HK$": "HKD",
    "A$": "AUD",
    "C$": "CAD",
    "S$": "SGD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₩": "KRW",
    "₹": "INR",
    "元": "CNY",
}

_CURRENCY_CODE_RE = re.compile(r"^[A-Za-z]{3}$")


def normalize_currency(raw: Any, default: str = "USD") -> str:
    """3-letter upper-case code, a known symbol's code, else `default`."""
    if not raw or not isinstance(raw, str):
        return default
    s = raw.strip()
    if _CURRENCY_CODE_RE.match(s):
        return s.upper()
    for sym, code in _CURRENCY_SYMBOLS.items():
        if sym in s:
            return code
    return default


# ── Numbers ───────────────────────────────────────────────────────────


def coerce_number(raw: Any) -> float | None:
    """Parse a number or price-like string. None if not numeric or not finite."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else None

    s = str(raw).strip()
    if not s:
        return None

    for sym in _CURRENCY_SYMBOLS:
        s = s.replace(sym, "")
    s = re.sub(r"\b[A-Za-z]{3}\b", "", s).strip()
    s = s.replace(",", "")

    # Ranges take the lower bound: "0.38-0.42" → 0.38
    if "-" in s and not s.startswith("-"):
        s = s.split("-")[0].strip()

    s = re.sub(
        r"[/\s]*(ea|each|pc|pcs|unit|units|piece|pieces)\.?\s*$", "", s, flags=re.IGNORECASE
    )

    m = re.match(r"^([\d.]+)\s*([kKmM])$", s)
    if m:
        try:
            num = float(m.group(1))
        except ValueError:
            return None
        return num * (1_000 if m.group(2) in "kK" else 1_000_000)

    try:
        val = float(s)
    except ValueError:
        return None
    return val if math.isfinite(val) else None


def coerce_int(raw: Any) -> int | None:
    """coerce_number, rounded half-up to an int."""
    val = coerce_number(raw)
    if val is None:
        return None
    return int(math.floor(val + 0.5))


_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0"}


def coerce_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        s = raw.strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    return None


def clamp_score(raw: Any) -> float | None:
    """Number clamped to [0, 100]; None when not numeric."""
    val = coerce_number(raw)
    if val is None:
        return None
    return max(0.0, min(100.0, val))


# ── Durations ─────────────────────────────────────────────────────────


def parse_lead_time_days(raw: Any) -> int | None:
    """Parse delivery/lead time to days. Midpoint for ranges. None if ambiguous.

    Handles: "4-6 weeks", "30 days", "2-3 wks", "in stock", "2 months"
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return int(raw)
    s = str(raw).strip().lower()
    if not s:
        return None

    if s in ("stock", "in stock", "immediate", "from stock", "0"):
        return 0

    nums = [float(n) for n in re.findall(r"(\d+(?:\.\d+)?)", s)]
    if not nums:
        return None

    if any(w in s for w in ("week", "wk")):
        multiplier = 7
    elif "month" in s:
        multiplier = 30
    else:
        multiplier = 1

    value = (nums[0] + nums[1]) / 2 if len(nums) >= 2 else nums[0]
    return int(value * multiplier)


def parse_warranty_months(raw: Any) -> int | None:
    """"2 years" → 24, "18 months" → 18. Bare numbers are months."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return int(raw)
    s = str(raw).strip().lower()
    m = re.search(r"(\d+(?:\.\d+)?)", s)
    if not m:
        return None
    value = float(m.group(1))
    if "year" in s or "yr" in s:
        value *= 12
    return int(value)
