"""
Dashboard actions that are not the trend chart: sign in/out, ingestion and
the latest/historical report view.

Each function returns a plain result object with any user-facing message
already composed, so the Streamlit layer only has to render it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from .api_client import CotApiClient
from .errors import ApiError
from .records import CotRecord, IngestResult
from .session import ANONYMOUS, Session, SessionStore

logger = logging.getLogger(__name__)

# Lower bound used when only an end date is given
EARLIEST_REPORT_DATE = "1900-01-01"

# Ingest form pre-fills the last month
INGEST_DEFAULT_DAYS = 30


# =============================================================================
# AUTH
# =============================================================================

def sign_in(client: CotApiClient, store: SessionStore, username: str, password: str) -> Session:
    """Log in and persist the new session. Raises AuthError on failure."""
    session = client.login(username, password)
    store.save(session)
    return session


def sign_out(store: SessionStore) -> Session:
    store.clear()
    return ANONYMOUS


# =============================================================================
# INGESTION
# =============================================================================

@dataclass
class IngestOutcome:
    result: Optional[IngestResult] = None
    status: Optional[str] = None
    error: Optional[str] = None


def ingest_status_message(result: IngestResult) -> str:
    if result.message:
        return result.message
    if result.duplicate_count > 0:
        return (
            f"Ingested {result.inserted_count} new records. "
            f"Skipped {result.duplicate_count} duplicates."
        )
    if result.inserted_count == 0:
        return "No new data found for the selected date range."
    return f"Successfully ingested {result.inserted_count} records"


def default_ingest_range(today: date = None, days: int = INGEST_DEFAULT_DAYS) -> tuple:
    """Pre-filled ingest bounds: the last `days` days up to today."""
    today = today or date.today()
    return today - timedelta(days=days), today


def ingest_range_hint(start_date: str = None, end_date: str = None) -> str:
    """Helper text describing what an ingest with these bounds will fetch."""
    if start_date and end_date:
        return f"Data between {start_date} and {end_date} will be ingested"
    if start_date:
        return f"Data newer than {start_date} will be ingested"
    if end_date:
        return f"Data older than {end_date} will be ingested"
    return "Leave dates empty to fetch all records"


def run_ingest(
    client: CotApiClient,
    session: Session,
    commodity: str,
    start_date: str = None,
    end_date: str = None,
) -> IngestOutcome:
    try:
        result = client.ingest(session, commodity, start_date or None, end_date or None)
    except ApiError as e:
        logger.error(f"Ingest of {commodity} failed: {e.message}")
        return IngestOutcome(error=f"Failed to ingest data: {e.message}")

    logger.info(
        f"Ingested {commodity}: {result.inserted_count} new, "
        f"{result.duplicate_count} duplicates"
    )
    return IngestOutcome(result=result, status=ingest_status_message(result))


# =============================================================================
# REPORT VIEW
# =============================================================================

@dataclass
class CommodityView:
    """Latest report plus the (optionally date-filtered) history."""

    commodity: str
    latest: Optional[CotRecord] = None
    history: list = field(default_factory=list)
    error: Optional[str] = None


def history_range(start_date: str = None, end_date: str = None, today: date = None) -> Optional[tuple]:
    """
    Resolve the date-range query for the history table.

    Returns None when neither bound is set (no history is loaded).
    """
    if not start_date and not end_date:
        return None
    today = today or date.today()
    return start_date or EARLIEST_REPORT_DATE, end_date or today.isoformat()


def load_commodity_view(
    client: CotApiClient,
    session: Session,
    commodity: str,
    start_date: str = None,
    end_date: str = None,
    today: date = None,
    include_all: bool = False,
) -> CommodityView:
    """
    Load the latest report and, when a date bound is set, the history.

    With no bounds the history stays empty unless `include_all` asks for
    every stored report of the commodity.

    History is sorted newest first. A failure is reported on the returned
    view rather than raised; whatever loaded before the failure is kept.
    """
    view = CommodityView(commodity=commodity)
    try:
        view.latest = client.get_latest(session, commodity)

        bounds = history_range(start_date, end_date, today)
        if bounds:
            history = client.get_cot_by_date_range(session, commodity, *bounds)
        elif include_all:
            history = client.get_cot_by_commodity(session, commodity)
        else:
            history = []
        history.sort(key=lambda r: r.report_date, reverse=True)
        view.history = history
    except ApiError as e:
        logger.error(f"Error loading {commodity} data: {e.message}")
        view.error = e.message

    logger.info(f"Loaded {commodity}: latest={view.latest is not None}, history={len(view.history)}")
    return view
