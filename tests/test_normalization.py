"""Tests for deterministic normalization helpers."""

import pytest

from autorfp.utils.normalization import (
    clamp_score,
    coerce_bool,
    coerce_int,
    coerce_number,
    normalize_currency,
    parse_lead_time_days,
    parse_warranty_months,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (12, 12.0),
        (0, 0.0),
        ("1,234.56", 1234.56),
        ("$8.50/ea", 8.5),
        ("USD 9,500", 9500.0),
        ("1.5k", 1500.0),
        ("0.38-0.42", 0.38),
        ("call for price", None),
        ("", None),
        (None, None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_coerce_number(raw, expected):
    assert coerce_number(raw) == expected


def test_coerce_int_rounds_half_up():
    assert coerce_int("12.5") == 13
    assert coerce_int(12.4) == 12
    assert coerce_int("20 units") == 20
    assert coerce_int(None) is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        (True, True), (False, False), ("yes", True), ("No", False),
        ("true", True), ("FALSE", False), ("1", True), ("0", False), (1, True), (0, False),
        ("partial", None), (None, None), (2, None),
    ],
)
def test_coerce_bool(raw, expected):
    assert coerce_bool(raw) is expected


def test_normalize_currency():
    assert normalize_currency("eur") == "EUR"
    assert normalize_currency("€") == "EUR"
    assert normalize_currency("HK$") == "HKD"
    assert normalize_currency("dollars", "GBP") == "GBP"
    assert normalize_currency(None, "INR") == "INR"


def test_clamp_score():
    assert clamp_score(140) == 100.0
    assert clamp_score(-5) == 0.0
    assert clamp_score("82.5") == 82.5
    assert clamp_score("n/a") is None


def test_lead_time_days():
    assert parse_lead_time_days("4-6 weeks") == 35
    assert parse_lead_time_days("10 business days") == 10
    assert parse_lead_time_days("2 months") == 60
    assert parse_lead_time_days("in stock") == 0
    assert parse_lead_time_days("asap") is None


def test_warranty_months():
    assert parse_warranty_months("2 years") == 24
    assert parse_warranty_months("18 months") == 18
    assert parse_warranty_months("none") is None
