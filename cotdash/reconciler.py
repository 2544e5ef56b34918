"""
Chart series reconciler for the COT trend chart.

Turns the fetched trend map (+ optional price/volume bars) into the list of
series the chart should show, then applies that list to an existing Plotly
figure. The figure object is kept across reruns so layout state such as the
zoom range survives (Plotly keys that on `layout.uirevision`).

Axis layout:
- field series    -> axis 0 ("y", left)
- price           -> axis 1 ("y2", right, overlaying the field axis)
- volume          -> next free axis ("y3" with price, "y2" without),
                     drawn as columns in the bottom band
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import pandas as pd
import plotly.graph_objects as go

from .field_catalog import field_display_name
from .records import PricePoint, TrendPoint

logger = logging.getLogger(__name__)

# Indexed by position in the current selection, not by field. Re-selecting
# the same fields in another order re-colors them.
FIELD_PALETTE = [
    "#D4AF37",
    "#0072B2",
    "#E69F00",
    "#009E73",
    "#CC79A7",
    "#56B4E9",
    "#D55E00",
    "#8C564B",
    "#17BECF",
    "#BCBD22",
    "#9467BD",
    "#E377C2",
]
PRICE_COLOR = "#2196F3"
VOLUME_COLOR = "#9E9E9E"

FIELD_AXIS = 0
PRICE_AXIS = 1

RANGE_BUTTONS = [
    dict(count=1, label="1M", step="month", stepmode="backward"),
    dict(count=3, label="3M", step="month", stepmode="backward"),
    dict(count=6, label="6M", step="month", stepmode="backward"),
    dict(count=1, label="1Y", step="year", stepmode="backward"),
    dict(count=2, label="2Y", step="year", stepmode="backward"),
    dict(count=3, label="3Y", step="year", stepmode="backward"),
    dict(count=5, label="5Y", step="year", stepmode="backward"),
    dict(label="All", step="all"),
]


class SeriesKind(Enum):
    FIELD = "field"
    PRICE = "price"
    VOLUME = "volume"


@dataclass
class ChartSeries:
    """One line/column on the trend chart."""

    name: str
    color: str
    axis: int
    kind: SeriesKind
    points: list = field(default_factory=list)  # [(epoch_ms, value), ...]


@dataclass
class ReconcileReport:
    """What a reconcile pass removed and added, by series name."""

    removed: list
    added: list

    @property
    def changed(self) -> bool:
        return self.removed != self.added


def to_epoch_ms(value: str) -> Optional[int]:
    """Parse a date string to epoch milliseconds (UTC), None if unparsable."""
    try:
        ts = pd.to_datetime(value, errors="coerce", utc=True)
    except (ValueError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return int(ts.value // 1_000_000)


def axis_ref(axis: int) -> str:
    """0 -> 'y', 1 -> 'y2', 2 -> 'y3'"""
    return "y" if axis == 0 else f"y{axis + 1}"


def _layout_key(axis: int) -> str:
    return "yaxis" if axis == 0 else f"yaxis{axis + 1}"


# =============================================================================
# DESIRED SERIES
# =============================================================================

def _trend_points(points: list[TrendPoint]) -> list:
    pairs = []
    for p in points:
        ms = to_epoch_ms(p.report_date)
        if ms is not None:
            pairs.append((ms, p.value))
    return pairs


def _price_points(bars: list[PricePoint], attr: str) -> list:
    pairs = []
    for bar in bars:
        value = getattr(bar, attr)
        if value is None:
            continue
        ms = to_epoch_ms(bar.date)
        if ms is not None:
            pairs.append((ms, value))
    return pairs


def build_desired_series(
    trend_map: dict,
    selected_fields: list,
    price_points: list = None,
    show_price_volume: bool = False,
) -> list[ChartSeries]:
    """
    Derive the series the chart should show for the current selection.

    Args:
        trend_map: field name -> list of TrendPoint
        selected_fields: Fields in selection order (drives colors)
        price_points: Daily PricePoint bars for the overlay
        show_price_volume: Whether the price/volume overlay is toggled on

    Returns:
        Field series first (selection order), then price, then volume.
        Empty when nothing is selected, overlay included.
    """
    if not selected_fields:
        return []

    series = [
        ChartSeries(
            name=field_display_name(name),
            color=FIELD_PALETTE[i % len(FIELD_PALETTE)],
            axis=FIELD_AXIS,
            kind=SeriesKind.FIELD,
            points=_trend_points(trend_map.get(name, [])),
        )
        for i, name in enumerate(selected_fields)
    ]

    if show_price_volume and price_points:
        closes = _price_points(price_points, "close")
        volumes = _price_points(price_points, "volume")
        if closes:
            series.append(ChartSeries("Price", PRICE_COLOR, PRICE_AXIS, SeriesKind.PRICE, closes))
        if volumes:
            volume_axis = PRICE_AXIS + 1 if closes else PRICE_AXIS
            series.append(ChartSeries("Volume", VOLUME_COLOR, volume_axis, SeriesKind.VOLUME, volumes))

    return series


# =============================================================================
# FIGURE
# =============================================================================

def _to_trace(s: ChartSeries):
    x = pd.to_datetime([ms for ms, _ in s.points], unit="ms")
    y = [v for _, v in s.points]

    if s.kind is SeriesKind.VOLUME:
        return go.Bar(
            x=x, y=y, name=s.name, yaxis=axis_ref(s.axis),
            marker_color=s.color, marker_line_width=0,
            hovertemplate="%{y:,.0f}",
        )
    if s.kind is SeriesKind.PRICE:
        return go.Scatter(
            x=x, y=y, name=s.name, yaxis=axis_ref(s.axis), mode="lines",
            line=dict(color=s.color, width=2),
            hovertemplate="$%{y:.2f}",
        )
    return go.Scatter(
        x=x, y=y, name=s.name, yaxis=axis_ref(s.axis), mode="lines+markers",
        line=dict(color=s.color, width=2),
        marker=dict(size=4),
        hovertemplate="%{y:,.0f}",
    )


def _apply_axes(fig: go.Figure, desired: list[ChartSeries]) -> None:
    fields = [s for s in desired if s.kind is SeriesKind.FIELD]
    price = next((s for s in desired if s.kind is SeriesKind.PRICE), None)
    volume = next((s for s in desired if s.kind is SeriesKind.VOLUME), None)

    top_domain = [0.3, 1.0] if volume else [0.0, 1.0]
    field_title = fields[0].name if len(fields) == 1 else "Position"
    fig.layout.yaxis = go.layout.YAxis(
        title_text=field_title, domain=top_domain, side="left",
        tickformat=",", gridcolor="#e5e5e5",
    )

    # Axes 1 and 2 are rebuilt every pass so a toggled-off overlay leaves
    # nothing behind
    extra = {1: None, 2: None}
    if price:
        extra[price.axis] = go.layout.YAxis(
            title_text="Price ($)", overlaying="y", side="right",
            tickformat=".2f", nticks=5, showgrid=False,
        )
    if volume:
        extra[volume.axis] = go.layout.YAxis(
            title_text="Volume", domain=[0.0, 0.25], anchor="x",
            side="left", tickformat=",", gridcolor="#e5e5e5",
        )
    for axis, layout in extra.items():
        fig.layout[_layout_key(axis)] = layout if layout is not None else go.layout.YAxis(visible=False)

    fig.layout.height = 500 if volume else 400


def reconcile(
    fig: go.Figure,
    desired: list[ChartSeries],
    title: str = None,
    redraw: Callable = None,
) -> ReconcileReport:
    """
    Make the figure's series match `desired`.

    All existing traces are removed and the desired set added in a single
    call (full replace; series counts are small). Layout state that does not
    belong to the series, such as uirevision and the range selector, is left
    alone. `redraw` is called exactly once, after the figure is consistent.
    """
    removed = [t.name for t in fig.data]

    fig.data = []
    _apply_axes(fig, desired)
    if title is not None:
        fig.layout.title.text = title
    if desired:
        fig.add_traces([_to_trace(s) for s in desired])

    report = ReconcileReport(removed=removed, added=[s.name for s in desired])
    logger.debug(f"Reconciled chart: -{len(report.removed)} +{len(report.added)} series")

    if redraw is not None:
        redraw(fig)
    return report


def chart_title(commodity: str, desired: list[ChartSeries]) -> str:
    names = [s.name for s in desired if s.kind is SeriesKind.FIELD]
    has_price = any(s.kind is SeriesKind.PRICE for s in desired)
    text = f"{', '.join(names)} - {commodity}"
    return text + " (with Price/Volume)" if has_price else text


def create_trend_figure(commodity: str, desired: list[ChartSeries]) -> go.Figure:
    """Build the chart once; later updates go through reconcile()."""
    fig = go.Figure()
    fig.update_layout(
        template="plotly_white",
        hovermode="x unified",
        uirevision=commodity,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        margin=dict(l=60, r=60, t=80, b=40),
        xaxis=dict(
            type="date",
            gridcolor="#e5e5e5",
            rangeselector=dict(buttons=RANGE_BUTTONS),
            rangeslider=dict(visible=True, thickness=0.05),
        ),
        barmode="overlay",
    )
    reconcile(fig, desired, title=chart_title(commodity, desired))
    return fig
