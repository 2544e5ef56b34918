"""
Static catalog of COT fields, commodities and futures tickers.

The taxonomy groups disaggregated-report fields by trader category, with a
short explanation of what each category means for price action. None of this
is derived from backend data.
"""

import re
from dataclasses import dataclass

COMMODITIES = ["SILVER", "GOLD", "COPPER", "CRUDE OIL"]

# Continuous front-month futures tickers used for the price/volume overlay
COMMODITY_SYMBOLS = {
    "SILVER": "SI=F",
    "GOLD": "GC=F",
    "CRUDE": "CL=F",
    "CRUDE OIL": "CL=F",
    "COPPER": "HG=F",
}
DEFAULT_SYMBOL = COMMODITY_SYMBOLS["SILVER"]


@dataclass(frozen=True)
class FieldCategory:
    """A labelled group of COT fields."""

    name: str
    fields: tuple
    meaning: str
    why_it_matters: str


FIELD_CATEGORIES = [
    FieldCategory(
        name="Managed Money",
        fields=("m_money_positions_long_all", "m_money_positions_short_all"),
        meaning="Positions held by speculative money managers (hedge funds, CTAs).",
        why_it_matters="Often the biggest driver of price swings because these traders are trend-followers.",
    ),
    FieldCategory(
        name="Producer / Merchant / Processor",
        fields=("prod_merc_positions_long", "prod_merc_positions_short"),
        meaning="Hedgers who use futures to manage physical exposure.",
        why_it_matters="Their positions often reflect fundamental supply/demand rather than speculation.",
    ),
    FieldCategory(
        name="Swap Dealers",
        # Double underscore is the backend's column name
        fields=("swap_positions_long_all", "swap__positions_short_all"),
        meaning="Financial institutions that hedge OTC swap risk.",
        why_it_matters=(
            "Often take the other side of managed money. They supply liquidity "
            "but also show speculative pressure."
        ),
    ),
    FieldCategory(
        name="Other Reportables",
        fields=("other_rept_positions_long", "other_rept_positions_short"),
        meaning="Other large reporting traders that don't fit the main categories.",
        why_it_matters="Provides additional context on market participation beyond the main trader categories.",
    ),
    FieldCategory(
        name="Change from Previous Week",
        fields=(
            "change_in_open_interest_all",
            "change_in_m_money_long_all",
            "change_in_m_money_short_all",
            "change_in_prod_merc_long",
            "change_in_prod_merc_short",
            "change_in_swap_long_all",
            "change_in_swap_short_all",
            "change_in_other_rept_long",
            "change_in_other_rept_short",
        ),
        meaning="Shows momentum: whether traders are piling into or out of positions.",
        why_it_matters="Sudden changes often precede price moves.",
    ),
    FieldCategory(
        name="Percent of Open Interest",
        fields=(
            "pct_of_open_interest_all",
            "pct_of_oi_m_money_long_all",
            "pct_of_oi_m_money_short_all",
            "pct_of_oi_prod_merc_long",
            "pct_of_oi_prod_merc_short",
            "pct_of_oi_swap_long_all",
            "pct_of_oi_swap_short_all",
            "pct_of_oi_other_rept_long",
            "pct_of_oi_other_rept_short",
        ),
        meaning="Normalizes positions across different markets and contract sizes.",
        why_it_matters="Easier to compare against price changes and understand relative position sizes.",
    ),
    FieldCategory(
        name="Number of Traders",
        fields=(
            "traders_tot_all",
            "traders_m_money_long_all",
            "traders_m_money_short_all",
            "traders_prod_merc_long_all",
            "traders_prod_merc_short_all",
            "traders_swap_long_all",
            "traders_swap_short_all",
            "traders_other_rept_long_all",
            "traders_other_rept_short",
        ),
        meaning="Indicates breadth of participation in the market.",
        why_it_matters="If large positions come from very few traders, the signal may be weaker.",
    ),
]

ALL_FIELDS = [f for category in FIELD_CATEGORIES for f in category.fields]

# Shown on the latest-report panel when present: (label, field)
KEY_METRICS = [
    ("Open Interest", "open_interest_all"),
    ("Prod/Merc Long", "prod_merc_positions_long"),
    ("Prod/Merc Short", "prod_merc_positions_short"),
    ("Swap Long", "swap_positions_long_all"),
    ("Swap Short", "swap__positions_short_all"),
    ("Managed Money Long", "m_money_positions_long_all"),
    ("Managed Money Short", "m_money_positions_short_all"),
]

# Columns the backend may send as numeric strings; every other string column
# (contract codes, market names) is kept verbatim
NUMERIC_FIELDS = frozenset(ALL_FIELDS) | {name for _, name in KEY_METRICS}


def get_commodity_symbol(commodity_name: str) -> str:
    """Map a commodity name to its futures ticker, defaulting to silver."""
    return COMMODITY_SYMBOLS.get(commodity_name.strip().upper(), DEFAULT_SYMBOL)


def field_display_name(field_name: str) -> str:
    """m_money_positions_long_all -> M Money Positions Long All"""
    spaced = field_name.replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)
