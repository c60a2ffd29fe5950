"""
Strava Governor - Streamlit Dashboard
API usage, queue depth and recent calls for the Strava request governor
"""

import streamlit as st
import pandas as pd
import plotly.graph_objects as go
from dotenv import load_dotenv

from src.utils.helpers import format_duration, format_timestamp, safe_divide, seconds_until
from src.utils.sidebar import render_sidebar, current_credential

# Load environment variables
load_dotenv()

# Page config
st.set_page_config(
    page_title="Strava Governor",
    page_icon="🚴‍♂️",
    layout="wide"
)

# Hide the default Streamlit page navigation in sidebar
st.markdown("""
<style>
    [data-testid="stSidebarNav"] {
        display: none;
    }
</style>
""", unsafe_allow_html=True)


def usage_gauge(title: str, window: dict) -> go.Figure:
    """Gauge of one usage window"""
    used_ratio = safe_divide(window["used"], window["limit"])
    color = "#2ecc71" if used_ratio < 0.7 else "#f39c12" if used_ratio < 0.9 else "#e74c3c"

    fig = go.Figure(go.Indicator(
        mode="gauge+number",
        value=window["used"],
        title={"text": title},
        gauge={
            "axis": {"range": [0, window["limit"]]},
            "bar": {"color": color},
            "threshold": {"line": {"color": "#e74c3c", "width": 3}, "value": window["limit"]}
        }
    ))
    fig.update_layout(height=260, margin=dict(l=20, r=20, t=60, b=10))
    return fig


def calls_dataframe(records: list) -> pd.DataFrame:
    """Recent call-log records as a table"""
    if not records:
        return pd.DataFrame()
    df = pd.DataFrame(records)
    df["Time"] = df["timestamp"].apply(format_timestamp)
    columns = {
        "Time": "Time",
        "method": "Method",
        "endpoint": "Endpoint",
        "status_code": "Status",
        "response_time_ms": "Response (ms)",
        "queue_time_ms": "Queued (ms)",
        "attempt": "Attempt",
        "owner_id": "Athlete",
        "error": "Error",
    }
    present = [c for c in columns if c in df.columns]
    return df[present].rename(columns=columns)


def start_sync_form(governor):
    """Form starting a background sync for the sidebar's athlete"""
    with st.form("start_sync_form"):
        limit = st.number_input("Activities to sync", min_value=1, max_value=200, value=30, step=5)
        submitted = st.form_submit_button("🔄 Start Background Sync", use_container_width=True)

    if submitted:
        credential = current_credential()
        if not credential:
            st.error("Please enter a Strava access token in the sidebar (or enable demo mode)")
            return
        result = governor.start_background_sync(st.session_state.owner_id, credential, {"limit": int(limit)})
        st.session_state.last_task_id = result["task_id"]
        st.success(f"✅ Sync started: `{result['task_id']}`")
        st.page_link("pages/sync_status.py", label="Follow progress", icon="🔄")


def main():
    governor = render_sidebar()

    st.title("📈 Strava API Usage")
    if st.session_state.use_mock_data:
        st.info("🎲 Demo mode: calls go to the local mock, real quota is untouched")

    auto_refresh = st.toggle("🔄 Auto-refresh (every 5 seconds)", value=False)

    stats = governor.get_usage_stats()
    short_term = stats["short_term"]
    long_term = stats["long_term"]

    col1, col2 = st.columns(2)
    with col1:
        st.plotly_chart(usage_gauge("15-minute window", short_term), use_container_width=True)
        st.caption(f"Resets in {format_duration(seconds_until(short_term['reset_at']))}")
    with col2:
        st.plotly_chart(usage_gauge("Daily window", long_term), use_container_width=True)
        st.caption(f"Resets in {format_duration(seconds_until(long_term['reset_at']))}")

    col1, col2, col3 = st.columns(3)
    col1.metric("Queued Requests", stats["queue_depth"])
    col2.metric("Remaining (15 min)", short_term["remaining"])
    col3.metric("Remaining (day)", long_term["remaining"])

    if governor.tracker.is_limited():
        st.warning("⚠️ Strava limits reached: queued requests wait for the window to reset")

    st.divider()

    st.header("🚴 Background Sync")
    start_sync_form(governor)

    st.divider()

    st.header("📋 Recent Calls")
    df = calls_dataframe(governor.call_log.recent(100) if governor.call_log else [])
    if df.empty:
        st.info("No Strava calls yet")
    else:
        st.dataframe(df, use_container_width=True, hide_index=True)

    if auto_refresh:
        import time
        time.sleep(5)
        st.rerun()


if __name__ == "__main__":
    main()
