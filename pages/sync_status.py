"""
Sync Status Page
Polls a background sync task and shows its progress and errors
"""

import streamlit as st
import pandas as pd
from dotenv import load_dotenv

from src.api.errors import NotFound
from src.utils.helpers import format_duration, format_timestamp
from src.utils.sidebar import render_sidebar

# Load environment variables
load_dotenv()

# Page config
st.set_page_config(
    page_title="Sync Status - Strava Governor",
    page_icon="🔄",
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

STATUS_ICONS = {
    "pending": "⏳",
    "running": "🔄",
    "completed": "✅",
    "failed": "❌",
}


def main():
    governor = render_sidebar()

    st.title("🔄 Background Sync Status")

    task_id = st.text_input("Task ID", value=st.session_state.get("last_task_id", ""))
    if not task_id:
        st.info("Start a sync from the main page, or paste a task id above.")
        return

    try:
        task = governor.get_sync_task_status(task_id.strip())
    except NotFound:
        st.error("❌ Sync task not found (unknown id, or expired after 24h)")
        return

    st.subheader(f"{STATUS_ICONS.get(task.status, '')} {task.status.capitalize()}")
    st.progress(task.progress_percent / 100, text=f"{task.completed_units}/{task.total_units} activities")

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Progress", f"{task.progress_percent}%")
    col2.metric("Activities", task.total_units)
    col3.metric("Errors", task.error_count)
    if task.duration_ms is not None:
        col4.metric("Duration", format_duration(task.duration_ms // 1000))

    st.write(f"**Athlete:** {task.owner_id}")
    st.write(f"**Started:** {format_timestamp(task.started_at)}")
    if task.ended_at:
        st.write(f"**Ended:** {format_timestamp(task.ended_at)}")

    if task.error:
        st.error(f"Activity list could not be fetched: {task.error}")

    if task.errors:
        st.subheader("⚠️ Failed Activities")
        df = pd.DataFrame(task.errors).rename(columns={"unit_ref": "Activity", "message": "Error"})
        st.dataframe(df, use_container_width=True, hide_index=True)
        if task.error_count > len(task.errors):
            st.caption(f"Showing the first {len(task.errors)} of {task.error_count} errors")

    if not task.is_finished:
        auto_refresh = st.toggle("🔄 Auto-refresh (every 2 seconds)", value=True)
        if auto_refresh:
            import time
            time.sleep(2)
            st.rerun()


if __name__ == "__main__":
    main()
