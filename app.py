"""
Machine Cycle & KPI Analytics - Main Application

Streamlit dashboard over the report composer. For each selected machine and
window it shows:
- Availability = Runtime / Window
- Throughput = Total / (Total + Misfeeds)
- Efficiency = Time credit / Runtime
- OEE = Availability × Efficiency × Throughput
"""

import streamlit as st
import logging

from utils.config import load_config, validate_config, get_app_config
from analysis.batch_reports import build_active_machine_reports, build_machine_reports
from core.categories import load_registry
from core.db.fetchers import PostgresEventStore
from ui.time_window_selector import render_time_window_selector, render_machine_selector
from ui.metrics_display import display_machine_report, display_failures

# Load configuration
load_config()
app_config = get_app_config()

# Configure logging
logging.basicConfig(
    level=getattr(logging, app_config["log_level"], logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Validate configuration
config_errors = validate_config()
if config_errors:
    st.error("❌ Configuration errors detected:")
    for error in config_errors:
        st.error(error)
    st.stop()

# Streamlit page config
st.set_page_config(
    page_title="Machine Cycle & KPI Analytics",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def get_event_store() -> PostgresEventStore:
    return PostgresEventStore()


@st.cache_resource
def get_registry():
    return load_registry(app_config)


st.title("🏭 Machine Cycle & KPI Analytics")
st.markdown("**Availability, throughput, efficiency and OEE from machine status and count events**")

with st.sidebar:
    window = render_time_window_selector(
        default_timezone=app_config["timezone"],
        default_hours=app_config["default_window_hours"],
    )
    st.divider()
    machine_serials = render_machine_selector()
    # None selects every machine that reported a status in the window
    run = st.button(
        "Build Reports", type="primary",
        disabled=window is None or machine_serials == []
    )

if not run:
    st.info("Select a time window and machines, then click **Build Reports**.")
    st.stop()

if machine_serials is None:
    with st.spinner("Building reports for all active machines..."):
        try:
            batch = build_active_machine_reports(
                get_event_store(),
                window,
                registry=get_registry(),
                max_workers=app_config["report_max_workers"],
            )
        except Exception as e:
            logger.error(f"Error listing active machines: {e}", exc_info=True)
            st.error(f"❌ Error listing active machines: {e}")
            st.stop()
    if not batch.reports and not batch.failures:
        st.warning("No machine reported a status in the selected window.")
else:
    with st.spinner(f"Building reports for {len(machine_serials)} machine(s)..."):
        batch = build_machine_reports(
            get_event_store(),
            machine_serials,
            window,
            registry=get_registry(),
            max_workers=app_config["report_max_workers"],
        )

logger.info(f"Dashboard built {batch.succeeded} reports, {batch.failed} failures")

if batch.failures:
    display_failures(batch.failures)

for i, report in enumerate(batch.reports):
    display_machine_report(report)
    if i < len(batch.reports) - 1:
        st.divider()
