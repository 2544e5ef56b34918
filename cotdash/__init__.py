# COT dashboard library
#
# Everything the Streamlit app needs that is not markup:
# - api_client: REST client for the COT/prices backend
# - normalizer: response-shape normalization into canonical records
# - reconciler: Plotly trend chart series reconciliation
# - orchestrator: debounced, concurrent trend loading
# - services: sign in/out, ingestion, latest/historical view
# - field_catalog: static field taxonomy and commodity tickers

from .config import Settings, load_settings

from .errors import ApiError, AuthError, ResponseShapeError

from .records import (
    CotRecord,
    IngestResult,
    PricePoint,
    RecordKind,
    TrendPoint,
    records_to_frame,
)

from .field_catalog import (
    ALL_FIELDS,
    COMMODITIES,
    FIELD_CATEGORIES,
    KEY_METRICS,
    FieldCategory,
    field_display_name,
    get_commodity_symbol,
)

from .normalizer import (
    decode_envelope,
    normalize,
    normalize_ingest,
    normalize_latest,
)

from .session import Session, SessionStore

from .api_client import CotApiClient

from .reconciler import (
    ChartSeries,
    SeriesKind,
    build_desired_series,
    create_trend_figure,
    reconcile,
)

from .orchestrator import TrendOrchestrator, TrendQuery, TrendResult

from .services import (
    CommodityView,
    IngestOutcome,
    default_ingest_range,
    ingest_range_hint,
    load_commodity_view,
    run_ingest,
    sign_in,
    sign_out,
)
