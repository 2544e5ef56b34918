#!/usr/bin/env python3
"""
Tests for the response normalizer.

Covers envelope detection, field synonyms, dropping of undated records and
value coercion for COT, trend and price payloads.

Run: pytest tests/test_normalizer.py
"""

import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cotdash.errors import ResponseShapeError
from cotdash.normalizer import (
    decode_envelope,
    normalize,
    normalize_ingest,
    normalize_latest,
    normalize_price_date,
    to_float,
)
from cotdash.records import CotRecord, IngestResult, PricePoint, RecordKind, TrendPoint, records_to_frame

FIELD = "m_money_positions_long_all"

ROWS = [
    {"reportDate": "2024-01-02", "value": 1000},
    {"report_date": "2024-01-09", "value": 1100},
]


# =============================================================================
# ENVELOPES
# =============================================================================

@pytest.mark.parametrize("payload", [
    ROWS,
    {"data": ROWS},
    {"data_points": ROWS},
])
def test_envelopes_normalize_identically(payload):
    """Bare array, data and data_points envelopes give the same records."""
    assert normalize(payload, RecordKind.TREND, FIELD) == [
        TrendPoint("2024-01-02", 1000.0),
        TrendPoint("2024-01-09", 1100.0),
    ]


def test_envelope_priority():
    """data_points wins over data when both are present; no merging."""
    payload = {
        "data_points": [{"date": "2024-01-02", "value": 1}],
        "data": [{"date": "2024-01-09", "value": 2}],
    }
    match = decode_envelope(payload)
    assert match.shape == "data_points"
    assert [p.report_date for p in normalize(payload, RecordKind.TREND)] == ["2024-01-02"]


def test_data_object_is_wrapped_as_singleton():
    match = decode_envelope({"data": {"report_date": "2024-01-02"}})
    assert match.shape == "data_object"
    assert match.items == [{"report_date": "2024-01-02"}]


@pytest.mark.parametrize("payload", [
    {"results": [{"date": "2024-01-02"}]},
    {"data": "not a list"},
    "plain string",
    42,
    None,
])
def test_unrecognized_envelope_yields_empty(payload, caplog):
    assert normalize(payload, RecordKind.TREND, FIELD) == []
    assert "Unexpected trend response shape" in caplog.text


# =============================================================================
# TREND
# =============================================================================

def test_end_to_end_trend_payload():
    """Mixed date keys in a data envelope come out canonical."""
    payload = {"data": [
        {"reportDate": "2024-01-02", "value": 1000},
        {"report_date": "2024-01-09", "value": 1100},
    ]}
    points = normalize(payload, RecordKind.TREND, FIELD)
    assert [p.as_dict() for p in points] == [
        {"reportDate": "2024-01-02", "value": 1000.0},
        {"reportDate": "2024-01-09", "value": 1100.0},
    ]


@pytest.mark.parametrize("key", [
    "reportDate", "report_date", "report_date_as_yyyy_mm_dd", "date", "Date",
])
def test_every_date_synonym_is_accepted(key):
    points = normalize([{key: "2024-03-05", "value": 7}], RecordKind.TREND)
    assert points == [TrendPoint("2024-03-05", 7.0)]


def test_first_present_date_synonym_wins():
    item = {"reportDate": None, "report_date": "", "date": "2024-02-06", "Date": "1999-01-01"}
    assert normalize([item], RecordKind.TREND)[0].report_date == "2024-02-06"


def test_value_falls_back_to_field_name():
    rows = [
        {"date": "2024-01-02", FIELD: 55},
        {"date": "2024-01-09", "value": None, FIELD: "66.5"},
    ]
    values = [p.value for p in normalize(rows, RecordKind.TREND, FIELD)]
    assert values == [55.0, 66.5]


@pytest.mark.parametrize("raw", [None, "n/a", "", {"nested": 1}, True])
def test_unparsable_trend_value_defaults_to_zero(raw):
    points = normalize([{"date": "2024-01-02", "value": raw}], RecordKind.TREND, FIELD)
    assert points == [TrendPoint("2024-01-02", 0.0)]


def test_undated_records_are_dropped_not_fatal(caplog):
    rows = [
        {"date": "2024-01-02", "value": 1},
        {"value": 2},
        "garbage",
        {"date": "2024-01-16", "value": 3},
    ]
    points = normalize(rows, RecordKind.TREND)
    assert [p.value for p in points] == [1.0, 3.0]
    assert "Dropped 2 of 4 trend records" in caplog.text


def test_order_is_preserved():
    rows = [{"date": d, "value": 0} for d in ("2024-03-01", "2024-01-01", "2024-02-01")]
    assert [p.report_date for p in normalize(rows, RecordKind.TREND)] == [
        "2024-03-01", "2024-01-01", "2024-02-01",
    ]


# =============================================================================
# COT RECORDS
# =============================================================================

def test_cot_record_fields():
    rows = [{
        "commodity_name": "SILVER",
        "report_date_as_yyyy_mm_dd": "2024-01-02",
        "open_interest_all": "150000",
        "m_money_positions_long_all": 42000,
        "market_and_exchange_names": "SILVER - COMMODITY EXCHANGE INC.",
    }]
    record = normalize(rows, RecordKind.COT)[0]
    assert record.report_date == "2024-01-02"
    assert record.commodity_name == "SILVER"
    assert record.get("open_interest_all") == 150000.0
    assert record.get("m_money_positions_long_all") == 42000.0
    assert record.get("market_and_exchange_names") == "SILVER - COMMODITY EXCHANGE INC."


def test_cot_identifier_strings_keep_leading_zeros():
    """Zero-padded CFTC codes stay strings; numeric catalog fields still parse."""
    rows = [{
        "report_date_as_yyyy_mm_dd": "2024-01-02",
        "cftc_contract_market_code": "084691",
        "cftc_commodity_code": "084",
        "open_interest_all": "150000",
        "traders_tot_all": "87",
        "change_in_open_interest_all": -1200,
    }]
    record = normalize(rows, RecordKind.COT)[0]
    assert record.get("cftc_contract_market_code") == "084691"
    assert record.get("cftc_commodity_code") == "084"
    assert record.get("open_interest_all") == 150000.0
    assert record.get("traders_tot_all") == 87.0
    assert record.get("change_in_open_interest_all") == -1200.0
    assert records_to_frame([record])["cftc_contract_market_code"].iloc[0] == "084691"


def test_cot_record_with_null_fields_is_kept_with_fields_absent():
    rows = [
        {"report_date": "2024-01-02", "open_interest_all": None, "m_money_positions_long_all": None},
        {"open_interest_all": 5},
    ]
    records = normalize(rows, RecordKind.COT)
    assert records == [CotRecord(report_date="2024-01-02", commodity_name=None, fields={})]


def test_latest_from_data_object():
    payload = {"data": {"commodity_name": "GOLD", "report_date_as_yyyy_mm_dd": "2024-05-07", "open_interest_all": 10}}
    record = normalize_latest(payload)
    assert record.commodity_name == "GOLD"
    assert record.report_date == "2024-05-07"
    assert record.get("open_interest_all") == 10.0


def test_latest_from_bare_record():
    record = normalize_latest({"commodity_name": "COPPER", "report_date": "2024-05-07"})
    assert record.commodity_name == "COPPER"


@pytest.mark.parametrize("payload", [{}, {"status": "ok"}, [], None])
def test_latest_unrecognized_is_none(payload):
    assert normalize_latest(payload) is None


# =============================================================================
# PRICES
# =============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("2024-01-02", "2024-01-02"),
    (1704153600000, "2024-01-02"),
    (1704153600000.0, "2024-01-02"),
    ("2024-01-02T15:30:00Z", "2024-01-02"),
    ("Jan 2, 2024", "2024-01-02"),
    ("not a date", "not a date"),
])
def test_price_date_normalization(raw, expected):
    assert normalize_price_date(raw) == expected


def test_price_points_with_capitalized_keys():
    payload = {"data": [
        {"Date": "2024-01-02", "Open": 23.1, "High": 23.5, "Low": 22.9, "Close": 23.4, "Volume": 1200},
        {"timestamp": 1704240000000, "close": "23.6"},
        {"close": 24.0},
    ]}
    points = normalize(payload, RecordKind.PRICE)
    assert points == [
        PricePoint("2024-01-02", 23.1, 23.5, 22.9, 23.4, 1200.0),
        PricePoint("2024-01-03", close=23.6),
    ]


def test_zero_price_values_are_kept():
    points = normalize([{"date": "2024-01-02", "close": 0, "volume": 0}], RecordKind.PRICE)
    assert points[0].close == 0.0
    assert points[0].volume == 0.0


# =============================================================================
# INGEST / COERCION
# =============================================================================

@pytest.mark.parametrize("payload, expected", [
    ({"insertedCount": 5, "duplicateCount": 2}, IngestResult(5, 2)),
    ({"insertedCount": 5}, IngestResult(5, 0)),
    ({"data": {"insertedCount": 3, "duplicateCount": 1}}, IngestResult(3, 1)),
    ({"data": {}}, IngestResult(0, 0)),
    ({"inserted_count": 4, "duplicate_count": 0, "message": "Done"}, IngestResult(4, 0, "Done")),
])
def test_normalize_ingest(payload, expected):
    assert normalize_ingest(payload) == expected


@pytest.mark.parametrize("payload", [{"status": "ok"}, [], None, {"data": [1, 2]}])
def test_normalize_ingest_rejects_unknown_shapes(payload):
    with pytest.raises(ResponseShapeError, match="Unexpected response format"):
        normalize_ingest(payload)


@pytest.mark.parametrize("raw, expected", [
    (3, 3.0),
    ("4.5", 4.5),
    (" 7 ", 7.0),
    ("abc", None),
    (None, None),
    (False, None),
    ("nan", None),
    (float("inf"), None),
])
def test_to_float(raw, expected):
    assert to_float(raw) == expected
