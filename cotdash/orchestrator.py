"""
Trend query orchestration: selection -> debounce -> fetch -> result.

When the selected fields change, the query waits for a quiet period (the
debounce) before dispatching. A dispatch fetches every field's trend series
concurrently, then, if the price/volume overlay is on, fetches the overlay
for the window spanned by the fetched points.

Every dispatch takes a generation number. The default "last_resolved" policy
applies whatever finishes last, so a slow superseded query can overwrite a
newer one. Under "latest_requested" a result is applied only if no newer
dispatch has been issued since.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

import pandas as pd

from .api_client import CotApiClient
from .config import Settings
from .field_catalog import get_commodity_symbol
from .session import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrendQuery:
    """What the user currently wants charted."""

    commodity: str
    fields: tuple
    show_price_volume: bool = False


@dataclass
class TrendResult:
    """Fetched data for one dispatched query."""

    generation: int
    query: TrendQuery
    trend_map: dict = field(default_factory=dict)  # field -> list[TrendPoint]
    price_points: list = field(default_factory=list)
    errors: dict = field(default_factory=dict)  # field -> message


class GenerationCounter:
    """Monotonic dispatch sequence numbers."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def latest(self) -> int:
        return self._value

    def is_latest(self, generation: int) -> bool:
        return generation == self._value


class Debouncer:
    """Calls `callback` once calls to trigger() have been quiet for `delay` seconds."""

    def __init__(self, delay: float, callback: Callable):
        self.delay = delay
        self.callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def trigger(self, *args) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire, args)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self, *args) -> None:
        with self._lock:
            self._timer = None
        self.callback(*args)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        return self._timer is not None


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return day.replace(year=day.year - years, day=28)


def overlay_window(trend_map: dict, today: date, lookback_years: int) -> Optional[tuple]:
    """
    Date range for the price/volume overlay.

    Spans from the earliest point across all field series to today, with the
    start clamped to `lookback_years` before today to bound the request
    against a rate-limited upstream.

    Returns:
        (start, end) as YYYY-MM-DD strings, or None when there are no points
    """
    parsed = [
        pd.to_datetime(p.report_date, errors="coerce")
        for points in trend_map.values()
        for p in points
    ]
    parsed = [ts for ts in parsed if not pd.isna(ts)]
    if not parsed:
        return None

    start = max(min(parsed).date(), years_before(today, lookback_years))
    return start.isoformat(), today.isoformat()


class TrendOrchestrator:
    """
    Debounced, concurrent trend loading for the chart.

    Usage:
        orchestrator = TrendOrchestrator(client, settings)
        orchestrator.submit(session, TrendQuery("SILVER", ("m_money_positions_long_all",)))
        orchestrator.wait(timeout=30)
        result = orchestrator.result
    """

    def __init__(
        self,
        client: CotApiClient,
        settings: Settings = None,
        on_result: Callable = None,
        today: Callable = date.today,
        max_workers: int = 6,
    ):
        settings = settings or Settings()
        self.client = client
        self.lookback_years = settings.price_lookback_years
        self.stale_policy = settings.stale_policy
        self.trend_limit = settings.trend_limit
        self.on_result = on_result
        self.today = today
        self.max_workers = max_workers

        self.result: Optional[TrendResult] = None
        self._generations = GenerationCounter()
        self._debouncer = Debouncer(settings.debounce_seconds, self._dispatch)
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def submit(self, session: Session, query: TrendQuery) -> None:
        """Selection changed. Restarts the settling delay."""
        self._idle.clear()
        if not query.fields:
            # Nothing to fetch: clear immediately, no debounce
            self._debouncer.cancel()
            self._apply(TrendResult(generation=self._generations.next(), query=query))
            return
        self._debouncer.trigger(session, query)

    def wait(self, timeout: float = None) -> bool:
        """Block until the latest submitted query has been applied."""
        return self._idle.wait(timeout)

    def cancel(self) -> None:
        self._debouncer.cancel()
        self._idle.set()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _dispatch(self, session: Session, query: TrendQuery) -> None:
        generation = self._generations.next()
        try:
            result = self.run_query(session, query, generation)
        except Exception as e:
            logger.error(f"Trend query {generation} failed: {e}")
            result = TrendResult(generation=generation, query=query, errors={"*": str(e)})
        self._apply(result)

    def run_query(self, session: Session, query: TrendQuery, generation: int = 0) -> TrendResult:
        """Fetch field trends, then the overlay. Synchronous."""
        trend_map, errors = self.fetch_trends(session, query.commodity, list(query.fields))

        price_points = []
        if query.show_price_volume:
            window = overlay_window(trend_map, self.today(), self.lookback_years)
            if window:
                start, end = window
                symbol = get_commodity_symbol(query.commodity)
                price_points = self.client.get_historical_prices(session, symbol, start, end, "1d")
                if not price_points:
                    logger.warning(f"No price/volume data for {symbol} {start}..{end}")

        return TrendResult(
            generation=generation,
            query=query,
            trend_map=trend_map,
            price_points=price_points,
            errors=errors,
        )

    def fetch_trends(self, session: Session, commodity: str, fields: list) -> tuple:
        """
        Fetch every field's trend in parallel.

        A failing field gets an empty series; the others are unaffected.

        Returns:
            (trend_map, errors) where errors maps field -> message
        """
        trend_map = {}
        errors = {}
        if not fields:
            return trend_map, errors

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(fields))) as executor:
            futures = {
                executor.submit(self.client.get_trend, session, commodity, f, self.trend_limit): f
                for f in fields
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    trend_map[name] = future.result()
                except Exception as e:
                    logger.warning(f"Failed to load trend data for field {name}: {e}")
                    trend_map[name] = []
                    errors[name] = str(e)

        # Keep selection order
        return {f: trend_map[f] for f in fields}, errors

    def _apply(self, result: TrendResult) -> bool:
        with self._lock:
            stale = not self._generations.is_latest(result.generation)
            if stale and self.stale_policy == "latest_requested":
                logger.info(
                    f"Discarding trend result {result.generation}, "
                    f"generation {self._generations.latest} is newer"
                )
                applied = False
            else:
                self.result = result
                applied = True
            if self._generations.is_latest(result.generation) and not self._debouncer.pending:
                self._idle.set()

        if applied and self.on_result is not None:
            self.on_result(result)
        return applied
