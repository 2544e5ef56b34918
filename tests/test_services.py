#!/usr/bin/env python3
"""
Tests for sign in/out, ingestion and the report view.

Run: pytest tests/test_services.py
"""

import os
import sys
from datetime import date

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cotdash.errors import ApiError, AuthError
from cotdash.records import CotRecord, IngestResult
from cotdash.services import (
    default_ingest_range,
    history_range,
    ingest_range_hint,
    ingest_status_message,
    load_commodity_view,
    run_ingest,
    sign_in,
    sign_out,
)
from cotdash.session import ANONYMOUS, Session, SessionStore

SESSION = Session(token="t", role="admin")


class FakeClient:
    def __init__(self, latest=None, history=None, fail_on=(), ingest_result=None, login_error=None):
        self.latest = latest
        self.history = history or []
        self.fail_on = set(fail_on)
        self.ingest_result = ingest_result
        self.login_error = login_error
        self.calls = []

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise ApiError(f"{name} exploded", 500)

    def login(self, username, password):
        if self.login_error:
            raise AuthError(self.login_error, 401)
        return SESSION

    def ingest(self, session, commodity_name, start_date=None, end_date=None):
        self.calls.append(("ingest", commodity_name, start_date, end_date))
        self._maybe_fail("ingest")
        return self.ingest_result

    def get_latest(self, session, commodity_name):
        self.calls.append(("latest", commodity_name))
        self._maybe_fail("latest")
        return self.latest

    def get_cot_by_date_range(self, session, commodity_name, start_date, end_date):
        self.calls.append(("range", commodity_name, start_date, end_date))
        self._maybe_fail("range")
        return list(self.history)

    def get_cot_by_commodity(self, session, commodity_name):
        self.calls.append(("all", commodity_name))
        self._maybe_fail("all")
        return list(self.history)


# =============================================================================
# AUTH
# =============================================================================

def test_sign_in_persists_session(tmp_path):
    store = SessionStore(tmp_path / "session.json")

    session = sign_in(FakeClient(), store, "u", "p")

    assert session == SESSION
    assert store.load() == SESSION


def test_failed_sign_in_leaves_store_untouched(tmp_path):
    store = SessionStore(tmp_path / "session.json")

    with pytest.raises(AuthError):
        sign_in(FakeClient(login_error="Invalid credentials"), store, "u", "p")
    assert store.load() == ANONYMOUS


def test_sign_out_clears_store(tmp_path):
    store = SessionStore(tmp_path / "session.json")
    store.save(SESSION)

    assert sign_out(store) == ANONYMOUS
    assert not store.path.exists()


# =============================================================================
# INGESTION
# =============================================================================

@pytest.mark.parametrize("result, message", [
    (IngestResult(5, 0), "Successfully ingested 5 records"),
    (IngestResult(5, 2), "Ingested 5 new records. Skipped 2 duplicates."),
    (IngestResult(0, 3), "Ingested 0 new records. Skipped 3 duplicates."),
    (IngestResult(0, 0), "No new data found for the selected date range."),
    (IngestResult(1, 0, "Backend says hi"), "Backend says hi"),
])
def test_ingest_status_message(result, message):
    assert ingest_status_message(result) == message


@pytest.mark.parametrize("start, end, hint", [
    ("2024-01-01", "2024-02-01", "Data between 2024-01-01 and 2024-02-01 will be ingested"),
    ("2024-01-01", None, "Data newer than 2024-01-01 will be ingested"),
    (None, "2024-02-01", "Data older than 2024-02-01 will be ingested"),
    (None, None, "Leave dates empty to fetch all records"),
])
def test_ingest_range_hint(start, end, hint):
    assert ingest_range_hint(start, end) == hint


def test_ingest_form_defaults_to_last_month():
    start, end = default_ingest_range(date(2024, 3, 15))
    assert (start, end) == (date(2024, 2, 14), date(2024, 3, 15))
    assert ingest_range_hint(start.isoformat(), end.isoformat()) == (
        "Data between 2024-02-14 and 2024-03-15 will be ingested"
    )


def test_run_ingest_success_and_empty_bounds_are_omitted():
    client = FakeClient(ingest_result=IngestResult(3, 1))

    outcome = run_ingest(client, SESSION, "SILVER", "", "2024-02-01")

    assert client.calls == [("ingest", "SILVER", None, "2024-02-01")]
    assert outcome.error is None
    assert outcome.status == "Ingested 3 new records. Skipped 1 duplicates."


def test_run_ingest_failure():
    outcome = run_ingest(FakeClient(fail_on=["ingest"]), SESSION, "GOLD")

    assert outcome.result is None
    assert outcome.error == "Failed to ingest data: ingest exploded"


# =============================================================================
# REPORT VIEW
# =============================================================================

TODAY = date(2024, 6, 1)


@pytest.mark.parametrize("start, end, expected", [
    ("2024-01-01", "2024-02-01", ("2024-01-01", "2024-02-01")),
    ("2024-01-01", None, ("2024-01-01", "2024-06-01")),
    (None, "2024-02-01", ("1900-01-01", "2024-02-01")),
    (None, None, None),
])
def test_history_range(start, end, expected):
    assert history_range(start, end, TODAY) == expected


def test_view_sorts_history_newest_first():
    history = [CotRecord("2024-01-02"), CotRecord("2024-01-16"), CotRecord("2024-01-09")]
    latest = CotRecord("2024-01-16", "SILVER")
    client = FakeClient(latest=latest, history=history)

    view = load_commodity_view(client, SESSION, "SILVER", start_date="2024-01-01", today=TODAY)

    assert view.latest == latest
    assert [r.report_date for r in view.history] == ["2024-01-16", "2024-01-09", "2024-01-02"]
    assert client.calls[-1] == ("range", "SILVER", "2024-01-01", "2024-06-01")
    assert view.error is None


def test_view_without_bounds_loads_only_latest():
    client = FakeClient(latest=CotRecord("2024-01-16"), history=[CotRecord("2024-01-02")])

    view = load_commodity_view(client, SESSION, "GOLD", today=TODAY)

    assert view.history == []
    assert [c[0] for c in client.calls] == ["latest"]


def test_view_include_all_uses_full_listing():
    client = FakeClient(history=[CotRecord("2024-01-02")])

    view = load_commodity_view(client, SESSION, "GOLD", include_all=True)

    assert len(view.history) == 1
    assert client.calls[-1] == ("all", "GOLD")


def test_view_failure_keeps_latest():
    latest = CotRecord("2024-01-16")
    client = FakeClient(latest=latest, fail_on=["range"])

    view = load_commodity_view(client, SESSION, "COPPER", end_date="2024-02-01", today=TODAY)

    assert view.latest == latest
    assert view.history == []
    assert view.error == "range exploded"
