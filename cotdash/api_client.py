"""
HTTP client for the COT backend.

Thin wrappers over the REST endpoints: every method builds the request,
checks the status and hands the decoded JSON to the normalizer. The session
is passed in explicitly on every call; the client itself holds no auth state.

Endpoints (relative to the configured base URL):
- POST /auth/login
- POST /cot/ingest
- GET  /cot/commodity/{name}
- GET  /cot/commodity/{name}/date-range
- GET  /cot/commodity/{name}/latest
- GET  /cot/commodity/{name}/trend/{field}
- GET  /prices/historical/{symbol}
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from .config import DEFAULT_BASE_URL, Settings
from .errors import ApiError, AuthError
from .normalizer import normalize, normalize_ingest, normalize_latest
from .records import CotRecord, IngestResult, PricePoint, RecordKind, TrendPoint
from .session import Session, role_from_token

logger = logging.getLogger(__name__)

DEFAULT_TREND_LIMIT = 999


def _segment(value: str) -> str:
    """URL-encode a single path segment (CRUDE OIL -> CRUDE%20OIL)."""
    return quote(value, safe="")


def _error_detail(resp: httpx.Response) -> str:
    """Best human-readable reason from an error response."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            detail = body.get(key)
            if isinstance(detail, str) and detail:
                return detail
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def is_rate_limited(resp: httpx.Response) -> bool:
    return resp.status_code == 400 and "rate limited" in _error_detail(resp).lower()


class CotApiClient:
    """
    Client for the COT/prices backend.

    Usage:
        client = CotApiClient.from_settings(load_settings())
        session = client.login("me@example.com", "secret")
        points = client.get_trend(session, "SILVER", "m_money_positions_long_all")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        trend_limit: int = DEFAULT_TREND_LIMIT,
        transport: httpx.BaseTransport = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.trend_limit = trend_limit
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.BaseTransport = None) -> "CotApiClient":
        return cls(
            base_url=settings.base_url,
            timeout=settings.timeout,
            trend_limit=settings.trend_limit,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        session: Optional[Session] = None,
        params=None,
        body: dict = None,
    ) -> httpx.Response:
        headers = session.auth_headers() if session else {}
        try:
            return self._http.request(method, path, params=params, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

    def _get_json(self, path: str, session: Session, params=None, what: str = "COT data"):
        resp = self._send("GET", path, session, params=params)
        if resp.is_error:
            raise ApiError(f"Failed to fetch {what}: {_error_detail(resp)}", resp.status_code)
        try:
            payload = resp.json()
        except ValueError as e:
            raise ApiError(f"Failed to fetch {what}: invalid JSON", resp.status_code) from e
        logger.debug(f"GET {path} -> {resp.status_code}")
        return payload

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def login(self, username: str, password: str) -> Session:
        """
        Exchange credentials for a bearer token.

        Returns:
            A new authenticated Session

        Raises:
            AuthError: on rejection, validation errors or a missing token
        """
        resp = self._send("POST", "/auth/login", body={"username": username, "password": password})

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.is_error:
            detail = data.get("detail")
            if resp.status_code == 422 and detail:
                first = detail[0] if isinstance(detail, list) and detail else detail
                msg = None
                if isinstance(first, dict):
                    msg = first.get("msg") or first.get("message")
                raise AuthError(msg or "Validation error", resp.status_code)
            reason = data.get("message") or data.get("error") or detail
            raise AuthError(reason if isinstance(reason, str) and reason else "Login failed", resp.status_code)

        token = data.get("token") or data.get("access_token")
        if not token:
            raise AuthError("No token received from server", resp.status_code)

        role = data.get("role") or role_from_token(token)
        logger.info(f"Logged in as {username} (role={role or 'unknown'})")
        return Session(token=token, role=role)

    # -------------------------------------------------------------------------
    # COT endpoints
    # -------------------------------------------------------------------------

    def ingest(
        self,
        session: Session,
        commodity_name: str,
        start_date: str = None,
        end_date: str = None,
    ) -> IngestResult:
        params = {"commodity_name": commodity_name}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date

        resp = self._send("POST", "/cot/ingest", session, params=params)
        if resp.is_error:
            raise ApiError(f"Ingest failed: {_error_detail(resp)}", resp.status_code)
        try:
            payload = resp.json()
        except ValueError as e:
            raise ApiError("Ingest failed: invalid JSON", resp.status_code) from e
        return normalize_ingest(payload)

    def get_cot_by_commodity(self, session: Session, commodity_name: str) -> list[CotRecord]:
        payload = self._get_json(f"/cot/commodity/{_segment(commodity_name)}", session)
        return normalize(payload, RecordKind.COT)

    def get_cot_by_date_range(
        self, session: Session, commodity_name: str, start_date: str, end_date: str
    ) -> list[CotRecord]:
        payload = self._get_json(
            f"/cot/commodity/{_segment(commodity_name)}/date-range",
            session,
            params={"start_date": start_date, "end_date": end_date},
        )
        return normalize(payload, RecordKind.COT)

    def get_latest(self, session: Session, commodity_name: str) -> Optional[CotRecord]:
        payload = self._get_json(
            f"/cot/commodity/{_segment(commodity_name)}/latest",
            session,
            what="latest COT data",
        )
        return normalize_latest(payload)

    def get_trend(
        self, session: Session, commodity_name: str, field_name: str, limit: int = None
    ) -> list[TrendPoint]:
        payload = self._get_json(
            f"/cot/commodity/{_segment(commodity_name)}/trend/{_segment(field_name)}",
            session,
            params={"limit": str(limit or self.trend_limit)},
            what="trend data",
        )
        return normalize(payload, RecordKind.TREND, field_name)

    # -------------------------------------------------------------------------
    # Prices
    # -------------------------------------------------------------------------

    def get_historical_prices(
        self,
        session: Session,
        symbol: str,
        start_date: str = None,
        end_date: str = None,
        interval: str = "1d",
    ) -> list[PricePoint]:
        """
        Daily price/volume bars for a ticker.

        Both the legacy (start/end) and current (start_date/end_date) query
        parameter names are sent. Never raises: rate limiting and any other
        failure yield an empty list so the chart can render without the
        overlay.
        """
        params = [("interval", interval)]
        if start_date:
            params += [("start_date", start_date), ("start", start_date)]
        if end_date:
            params += [("end_date", end_date), ("end", end_date)]

        path = f"/prices/historical/{_segment(symbol)}"
        try:
            resp = self._send("GET", path, session, params=params)
            if is_rate_limited(resp):
                logger.warning(f"Price data for {symbol} rate limited, skipping price/volume overlay")
                return []
            if resp.is_error:
                raise ApiError(f"Failed to fetch price data: {_error_detail(resp)}", resp.status_code)
            payload = resp.json()
        except (ApiError, ValueError) as e:
            logger.error(f"Error fetching historical price data for {symbol}: {e}")
            return []

        return normalize(payload, RecordKind.PRICE)
