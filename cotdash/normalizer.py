"""
Response normalizer - one seam that absorbs backend response drift.

The COT backend has answered with several envelope conventions over time
(bare arrays, {"data": [...]}, {"data_points": [...]}, {"data": {...}}) and
with several spellings for the same field. Everything here turns those
payloads into the canonical record types in `records.py`, so the rest of the
dashboard can assume one shape.

Policy:
- Envelope decoders are tried in a fixed order; the first match wins.
- A record without a date is dropped (and logged), the rest of the batch
  is kept.
- Unparsable trend values become 0.0.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Optional

import pandas as pd

from .errors import ResponseShapeError
from .field_catalog import NUMERIC_FIELDS
from .records import CotRecord, IngestResult, PricePoint, RecordKind, TrendPoint

logger = logging.getLogger(__name__)

# =============================================================================
# FIELD SYNONYMS (first present, non-null key wins)
# =============================================================================

DATE_KEYS = ("reportDate", "report_date", "report_date_as_yyyy_mm_dd", "date", "Date")
PRICE_DATE_KEYS = ("date", "Date", "timestamp")
PRICE_VALUE_KEYS = {
    "open": ("open", "Open"),
    "high": ("high", "High"),
    "low": ("low", "Low"),
    "close": ("close", "Close"),
    "volume": ("volume", "Volume"),
}
INSERTED_KEYS = ("insertedCount", "inserted_count")
DUPLICATE_KEYS = ("duplicateCount", "duplicate_count")

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Only the first few bad rows are logged to keep the log readable
MAX_DROP_WARNINGS = 3


# =============================================================================
# ENVELOPE DECODERS
# =============================================================================

@dataclass
class EnvelopeMatch:
    """Result of a successful envelope decode."""

    shape: str
    items: list


def _decode_bare_list(payload) -> Optional[EnvelopeMatch]:
    if isinstance(payload, list):
        return EnvelopeMatch("array", payload)
    return None


def _decode_data_points(payload) -> Optional[EnvelopeMatch]:
    if isinstance(payload, dict) and isinstance(payload.get("data_points"), list):
        return EnvelopeMatch("data_points", payload["data_points"])
    return None


def _decode_data_list(payload) -> Optional[EnvelopeMatch]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return EnvelopeMatch("data", payload["data"])
    return None


def _decode_data_object(payload) -> Optional[EnvelopeMatch]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return EnvelopeMatch("data_object", [payload["data"]])
    return None


def _decode_bare_record(payload) -> Optional[EnvelopeMatch]:
    """A single record returned without any wrapper."""
    if not isinstance(payload, dict):
        return None
    if payload.get("commodity_name") or _first_present(payload, DATE_KEYS) is not None:
        return EnvelopeMatch("record", [payload])
    return None


ENVELOPE_DECODERS: tuple = (
    _decode_bare_list,
    _decode_data_points,
    _decode_data_list,
    _decode_data_object,
)

LATEST_DECODERS: tuple = (
    _decode_data_object,
    _decode_bare_record,
)


def decode_envelope(payload, decoders: tuple = ENVELOPE_DECODERS) -> Optional[EnvelopeMatch]:
    """Run the decoder chain; return the first match or None."""
    for decoder in decoders:
        match = decoder(payload)
        if match is not None:
            return match
    return None


# =============================================================================
# VALUE COERCION
# =============================================================================

def _first_present(item: dict, keys: tuple):
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return None


def to_float(value) -> Optional[float]:
    """Parse a JSON scalar as a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def normalize_price_date(value) -> str:
    """
    Normalize a price bar date to YYYY-MM-DD.

    Accepts ISO dates (returned as-is), epoch milliseconds and free-form date
    strings. Anything unparsable is returned as its string form.
    """
    if isinstance(value, str) and ISO_DATE_RE.match(value):
        return value
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return pd.to_datetime(value, unit="ms", utc=True).strftime("%Y-%m-%d")
        if isinstance(value, str):
            parsed = pd.to_datetime(value, errors="coerce", utc=True)
            if not pd.isna(parsed):
                return parsed.strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        pass
    return str(value)


# =============================================================================
# RECORD PARSERS
# =============================================================================

def _parse_trend(item: dict, field_name: Optional[str]) -> Optional[TrendPoint]:
    date = _first_present(item, DATE_KEYS)
    if date is None:
        return None

    raw = item.get("value")
    if raw is None and field_name:
        raw = item.get(field_name)
    value = to_float(raw)

    return TrendPoint(report_date=str(date), value=value if value is not None else 0.0)


def _parse_cot(item: dict, field_name: Optional[str] = None) -> Optional[CotRecord]:
    date = _first_present(item, DATE_KEYS)
    if date is None:
        return None

    fields = {}
    for key, raw in item.items():
        if key in DATE_KEYS or key == "commodity_name" or raw is None:
            continue
        if isinstance(raw, str) and key not in NUMERIC_FIELDS:
            fields[key] = raw
            continue
        number = to_float(raw)
        fields[key] = number if number is not None else raw

    return CotRecord(
        report_date=str(date),
        commodity_name=item.get("commodity_name"),
        fields=fields,
    )


def _parse_price(item: dict, field_name: Optional[str] = None) -> Optional[PricePoint]:
    raw_date = _first_present(item, PRICE_DATE_KEYS)
    if raw_date is None:
        return None

    values = {
        name: to_float(_first_present(item, keys))
        for name, keys in PRICE_VALUE_KEYS.items()
    }
    return PricePoint(date=normalize_price_date(raw_date), **values)


_PARSERS: dict[RecordKind, Callable] = {
    RecordKind.COT: _parse_cot,
    RecordKind.TREND: _parse_trend,
    RecordKind.PRICE: _parse_price,
}


# =============================================================================
# PUBLIC API
# =============================================================================

def normalize(payload, kind: RecordKind, field_name: str = None) -> list:
    """
    Extract canonical records from a backend payload.

    Args:
        payload: Decoded JSON of unknown envelope shape
        kind: Which record type to produce
        field_name: For trend payloads, the COT field the values belong to
            (used as a fallback value key)

    Returns:
        List of CotRecord, TrendPoint or PricePoint. Empty when the envelope
        is not recognized.
    """
    match = decode_envelope(payload)
    if match is None:
        logger.warning(f"Unexpected {kind.value} response shape ({type(payload).__name__}), treating as empty")
        return []

    parse = _PARSERS[kind]
    records = []
    dropped = 0
    for item in match.items:
        record = parse(item, field_name) if isinstance(item, dict) else None
        if record is None:
            dropped += 1
            if dropped <= MAX_DROP_WARNINGS:
                logger.warning(f"Dropping {kind.value} record without a date: {item!r}")
            continue
        records.append(record)

    if dropped:
        logger.warning(f"Dropped {dropped} of {len(match.items)} {kind.value} records")
    logger.debug(f"Normalized {len(records)} {kind.value} records from '{match.shape}' envelope")
    return records


def normalize_latest(payload) -> Optional[CotRecord]:
    """Extract the single record of a "latest report" response, or None."""
    match = decode_envelope(payload, LATEST_DECODERS)
    if match is None:
        logger.warning("Unexpected latest-report response shape, treating as empty")
        return None
    return _parse_cot(match.items[0])


def normalize_ingest(payload) -> IngestResult:
    """
    Read insert/duplicate counts from an ingest response.

    Raises:
        ResponseShapeError: when neither the top level nor `data` carries
            the counts
    """
    if not isinstance(payload, dict):
        raise ResponseShapeError("Unexpected response format")

    if _first_present(payload, INSERTED_KEYS) is not None:
        body = payload
    elif isinstance(payload.get("data"), dict):
        body = payload["data"]
    else:
        raise ResponseShapeError("Unexpected response format")

    message = body.get("message") or payload.get("message")
    return IngestResult(
        inserted_count=int(to_float(_first_present(body, INSERTED_KEYS)) or 0),
        duplicate_count=int(to_float(_first_present(body, DUPLICATE_KEYS)) or 0),
        message=message or None,
    )
