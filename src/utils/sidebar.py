"""
Shared Sidebar Component
Provides the governor instance, credentials and navigation for all dashboard pages
"""

import os

import streamlit as st
from dotenv import load_dotenv

load_dotenv()


@st.cache_resource
def get_governor(use_mock_data: bool):
    """
    One running governor per process and mode

    The demo governor keeps its counters in a separate state directory so that
    mock traffic never eats into the real Strava budget.
    """
    from src.config import GovernorSettings
    from src.services.governor import StravaGovernor
    from src.utils.log_config import setup_logging, level_from_name
    from src.utils.mock_data import MockStravaTransport

    setup_logging(level_from_name(os.getenv("LOG_LEVEL")), os.getenv("LOG_FILE"))

    settings = GovernorSettings.from_env()
    transport = None
    if use_mock_data:
        settings.state_dir = os.path.join(settings.state_dir, "demo")
        transport = MockStravaTransport(latency=0.05)

    return StravaGovernor.from_settings(settings, transport=transport).start()


def render_sidebar():
    """Render the sidebar and return the governor for the selected mode"""
    if 'use_mock_data' not in st.session_state:
        st.session_state.use_mock_data = not os.getenv("STRAVA_ACCESS_TOKEN")
    if 'owner_id' not in st.session_state:
        st.session_state.owner_id = os.getenv("STRAVA_ATHLETE_ID", "demo-athlete")
    if 'access_token' not in st.session_state:
        st.session_state.access_token = os.getenv("STRAVA_ACCESS_TOKEN", "")

    with st.sidebar:
        st.header("🔐 Strava Account")
        st.session_state.owner_id = st.text_input("Athlete ID", value=st.session_state.owner_id,
                                                  key="sidebar_owner_id")
        st.session_state.access_token = st.text_input("Access Token", value=st.session_state.access_token,
                                                      type="password", key="sidebar_access_token")

        st.divider()

        st.header("📍 Navigation")
        st.page_link("app.py", label="API Usage", icon="📈")
        st.page_link("pages/sync_status.py", label="Sync Status", icon="🔄")

        st.divider()

        st.subheader("🎲 Demo Mode")
        use_mock = st.toggle("Use Mock Strava", value=st.session_state.use_mock_data, key="sidebar_mock_toggle")
        if use_mock != st.session_state.use_mock_data:
            st.session_state.use_mock_data = use_mock
            st.rerun()
        if st.session_state.use_mock_data:
            st.caption("Requests are answered by a local mock with occasional 429s and 500s.")

    return get_governor(st.session_state.use_mock_data)


def current_credential() -> str:
    """Access token to send, a placeholder in demo mode"""
    if st.session_state.use_mock_data:
        return st.session_state.access_token or "demo-token"
    return st.session_state.access_token
