#!/usr/bin/env python3
"""
COT Dashboard - Streamlit front end for the Commitment of Traders backend.
Trigger ingestion, browse the latest and historical reports, and chart COT
positioning fields against daily futures price and volume.

Run: streamlit run app.py
"""

from __future__ import annotations

import logging

import streamlit as st

from cotdash import (
    COMMODITIES,
    FIELD_CATEGORIES,
    KEY_METRICS,
    AuthError,
    CotApiClient,
    Session,
    SessionStore,
    TrendOrchestrator,
    TrendQuery,
    build_desired_series,
    create_trend_figure,
    default_ingest_range,
    field_display_name,
    ingest_range_hint,
    load_commodity_view,
    load_settings,
    reconcile,
    records_to_frame,
    run_ingest,
    sign_in,
    sign_out,
)
from cotdash.reconciler import chart_title

logger = logging.getLogger("cotdash.app")


@st.cache_resource(show_spinner=False)
def get_settings():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings


@st.cache_resource(show_spinner=False)
def get_client() -> CotApiClient:
    return CotApiClient.from_settings(get_settings())


def get_store() -> SessionStore:
    return SessionStore(get_settings().session_file)


def init_state():
    """Per-browser-session state. The auth session is loaded from disk once."""
    if 'session' not in st.session_state:
        st.session_state.session = get_store().load()
    if 'orchestrator' not in st.session_state:
        st.session_state.orchestrator = TrendOrchestrator(get_client(), get_settings())
    if 'selected_fields' not in st.session_state:
        st.session_state.selected_fields = []
    if 'last_trend_query' not in st.session_state:
        st.session_state.last_trend_query = None
    if 'trend_figure' not in st.session_state:
        st.session_state.trend_figure = None
    if 'view' not in st.session_state:
        st.session_state.view = None
    if 'ingest_outcome' not in st.session_state:
        st.session_state.ingest_outcome = None


def format_value(value) -> str:
    if isinstance(value, float):
        return f"{value:,.0f}" if value == int(value) else f"{value:,.2f}"
    return str(value)


# =============================================================================
# AUTH
# =============================================================================

def render_auth() -> Session:
    session: Session = st.session_state.session

    with st.sidebar:
        st.header("Account")
        if session.is_authenticated:
            st.caption(f"Signed in{f' as {session.role}' if session.role else ''}")
            if st.button("Logout"):
                st.session_state.orchestrator.cancel()
                st.session_state.session = sign_out(get_store())
                st.rerun()
            return session

        with st.form("login_form", clear_on_submit=False):
            username = st.text_input("Email / Username", placeholder="Enter your email or username")
            password = st.text_input("Password", type="password", placeholder="Enter your password")
            submitted = st.form_submit_button("Login")

        if submitted:
            try:
                with st.spinner("Logging in..."):
                    st.session_state.session = sign_in(get_client(), get_store(), username, password)
                st.rerun()
            except AuthError as e:
                logger.warning(f"Login failed for {username}: {e.message}")
                st.error(e.message or "Login failed. Please try again.")

    return session


# =============================================================================
# INGESTION
# =============================================================================

def render_ingestion(session: Session):
    st.subheader("Ingest Data")

    commodity = st.selectbox("Select Commodity", COMMODITIES, key="ingest_commodity")
    default_start, default_end = default_ingest_range()
    col1, col2 = st.columns(2)
    with col1:
        start = st.date_input("Start Date (Optional)", value=default_start, key="ingest_start")
    with col2:
        end = st.date_input("End Date (Optional)", value=default_end, key="ingest_end")

    start_str = start.isoformat() if start else None
    end_str = end.isoformat() if end else None
    st.caption(ingest_range_hint(start_str, end_str))

    if st.button("Ingest Data", type="primary"):
        with st.spinner("Fetching data from CFTC API..."):
            st.session_state.ingest_outcome = run_ingest(get_client(), session, commodity, start_str, end_str)

    outcome = st.session_state.ingest_outcome
    if outcome is None:
        return
    if outcome.error:
        st.error(f"Error: {outcome.error}")
        if st.button("Dismiss"):
            st.session_state.ingest_outcome = None
            st.rerun()
    else:
        st.success(outcome.status)
        if outcome.result and outcome.result.inserted_count > 0:
            st.caption(f"Records ingested: {outcome.result.inserted_count}")


# =============================================================================
# LATEST / HISTORICAL VIEW
# =============================================================================

def render_latest(record):
    st.markdown("#### Latest Data")
    col1, col2 = st.columns(2)
    col1.markdown(f"**Report Date:** {record.report_date or 'N/A'}")
    col2.markdown(f"**Commodity:** {record.commodity_name or 'N/A'}")

    metrics = [(label, record.get(name)) for label, name in KEY_METRICS if record.get(name) is not None]
    if not metrics:
        return
    st.markdown("**Key Metrics**")
    cols = st.columns(min(len(metrics), 4))
    for i, (label, value) in enumerate(metrics):
        cols[i % len(cols)].metric(label=label, value=format_value(value))


def render_view_data(session: Session) -> str:
    st.subheader("View Data")

    commodity = st.selectbox("Select Commodity", COMMODITIES, key="view_commodity")
    col1, col2 = st.columns(2)
    with col1:
        start = st.date_input("Start Date (Optional)", value=None, key="view_start")
    with col2:
        end = st.date_input("End Date (Optional)", value=None, key="view_end")
    include_all = st.checkbox("Load every stored report when no dates are set", key="view_all")

    if st.button("Load Data"):
        with st.spinner("Loading..."):
            st.session_state.view = load_commodity_view(
                get_client(),
                session,
                commodity,
                start.isoformat() if start else None,
                end.isoformat() if end else None,
                include_all=include_all,
            )

    view = st.session_state.view
    if view is not None:
        if view.error:
            st.error(f"Error: {view.error}")
        if view.latest:
            render_latest(view.latest)
        if view.history:
            st.markdown(f"#### Historical Data ({len(view.history)} reports)")
            st.dataframe(records_to_frame(view.history), width='stretch', hide_index=True)

    return commodity


# =============================================================================
# TREND CHART
# =============================================================================

def _toggle_field(name: str):
    """Checkbox callback; keeps fields in the order they were selected."""
    selected = st.session_state.selected_fields
    if st.session_state[f"field_{name}"]:
        if name not in selected:
            selected.append(name)
    elif name in selected:
        selected.remove(name)


def render_field_selector():
    count = len(st.session_state.selected_fields)
    with st.expander(f"Select fields to chart ({count} selected)", expanded=False):
        for category in FIELD_CATEGORIES:
            st.markdown(f"**{category.name}**")
            st.caption(f"{category.meaning} Why it matters: {category.why_it_matters}")
            cols = st.columns(3)
            for i, name in enumerate(category.fields):
                cols[i % 3].checkbox(
                    field_display_name(name),
                    key=f"field_{name}",
                    on_change=_toggle_field,
                    args=(name,),
                )


def render_trend_chart(session: Session, commodity: str):
    st.subheader("Trend Chart")
    render_field_selector()
    show_price_volume = st.checkbox("Show price/volume overlay", key="show_price_volume")

    settings = get_settings()
    orchestrator: TrendOrchestrator = st.session_state.orchestrator
    query = TrendQuery(commodity, tuple(st.session_state.selected_fields), show_price_volume)

    # A new login reruns the same query with the new token
    if (session, query) != st.session_state.last_trend_query:
        orchestrator.submit(session, query)
        st.session_state.last_trend_query = (session, query)

    if not query.fields:
        st.info("Select one or more fields to chart their weekly trend.")
        return

    with st.spinner("Loading trend data..."):
        settled = orchestrator.wait(timeout=settings.timeout * 2)
    result = orchestrator.result
    if not settled or result is None or result.query != query:
        st.warning("Trend data is still loading.")
        return

    if "*" in result.errors:
        st.error(f"Error loading trend data: {result.errors['*']}")
        return
    failed = [field_display_name(f) for f in result.errors]
    if failed:
        st.warning(f"No data could be loaded for: {', '.join(failed)}")
    if show_price_volume and not result.price_points:
        st.caption("No price/volume data received. The price API may be rate limited.")

    desired = build_desired_series(result.trend_map, list(query.fields), result.price_points, show_price_volume)

    fig = st.session_state.trend_figure
    if fig is None:
        fig = create_trend_figure(commodity, [])
        st.session_state.trend_figure = fig
    fig.layout.uirevision = commodity
    reconcile(
        fig,
        desired,
        title=chart_title(commodity, desired),
        redraw=lambda f: st.plotly_chart(f, width='stretch', key="trend_chart"),
    )


def main():
    st.set_page_config(page_title="COT Dashboard", page_icon="📊", layout="wide")
    get_settings()
    st.title("Commitment of Traders (COT) Data")

    init_state()
    session = render_auth()

    render_ingestion(session)
    st.markdown("---")
    commodity = render_view_data(session)
    st.markdown("---")
    render_trend_chart(session, commodity)


if __name__ == "__main__":
    main()
