"""
Canonical record types produced by the response normalizer.

Whatever shape the backend answers with, presentation code only ever sees
these classes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import pandas as pd


class RecordKind(Enum):
    """Which canonical type a payload should be normalized into."""

    COT = "cot"
    TREND = "trend"
    PRICE = "price"


@dataclass
class CotRecord:
    """One weekly COT report row for a commodity."""

    report_date: str
    commodity_name: Optional[str] = None
    fields: dict = field(default_factory=dict)  # field name -> float or str

    def get(self, name: str, default=None):
        return self.fields.get(name, default)

    def as_dict(self) -> dict:
        row = {
            "report_date_as_yyyy_mm_dd": self.report_date,
            "commodity_name": self.commodity_name,
        }
        row.update(self.fields)
        return row


@dataclass
class TrendPoint:
    """A single (report date, value) observation of one COT field."""

    report_date: str
    value: float

    def as_dict(self) -> dict:
        return {"reportDate": self.report_date, "value": self.value}


@dataclass
class PricePoint:
    """Daily OHLCV bar for a futures ticker."""

    date: str
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None


@dataclass
class IngestResult:
    """Outcome of an ingestion request."""

    inserted_count: int = 0
    duplicate_count: int = 0
    message: Optional[str] = None


def records_to_frame(records: list[CotRecord]) -> pd.DataFrame:
    """Flatten COT records into a DataFrame for tabular display."""
    if not records:
        return pd.DataFrame()
    return pd.DataFrame([r.as_dict() for r in records])
