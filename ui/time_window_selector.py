"""
Time Window Selector UI Component

Sidebar controls for the reporting window and the machines to report on.
"""

import streamlit as st
import logging
import pytz
from datetime import datetime, timedelta
from typing import List, Optional

from core.time_windows.models import TimeWindow

logger = logging.getLogger(__name__)

TIMEZONE_OPTIONS = ["UTC", "Europe/Copenhagen", "America/New_York", "America/Chicago", "Asia/Tokyo"]
ALL_ACTIVE_MACHINES = "All active in window"


def _parse_local(value: str, tz) -> Optional[datetime]:
    for fmt in ('%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M'):
        try:
            return tz.localize(datetime.strptime(value.strip(), fmt))
        except ValueError:
            continue
    return None


def render_time_window_selector(
    default_timezone: str = "UTC",
    default_hours: int = 8,
    key_prefix: str = "report_window"
) -> Optional[TimeWindow]:
    """
    Render the reporting window inputs.

    Args:
        default_timezone: Timezone preselected for the inputs
        default_hours: Length of the default window ending at the current hour
        key_prefix: Unique key prefix for Streamlit widgets

    Returns:
        TimeWindow, or None if the inputs are invalid
    """
    st.subheader("⏰ Time Window")

    options = TIMEZONE_OPTIONS if default_timezone in TIMEZONE_OPTIONS else [default_timezone] + TIMEZONE_OPTIONS
    selected_tz = st.selectbox(
        "Timezone:",
        options=options,
        index=options.index(default_timezone),
        key=f"{key_prefix}_timezone",
        help="Times below are interpreted in this timezone"
    )

    tz = pytz.timezone(selected_tz)
    now_tz = datetime.now(tz).replace(minute=0, second=0, microsecond=0)
    default_start = (now_tz - timedelta(hours=default_hours)).strftime('%Y-%m-%d %H:%M:%S')
    default_end = now_tz.strftime('%Y-%m-%d %H:%M:%S')

    start_str = st.text_input(
        f"Start (YYYY-MM-DD HH:MM:SS) [{selected_tz}]:",
        value=default_start,
        key=f"{key_prefix}_start"
    )
    end_str = st.text_input(
        f"End (YYYY-MM-DD HH:MM:SS) [{selected_tz}]:",
        value=default_end,
        key=f"{key_prefix}_end"
    )

    start = _parse_local(start_str, tz)
    end = _parse_local(end_str, tz)
    if start is None or end is None:
        st.error("❌ Invalid time format. Use YYYY-MM-DD HH:MM:SS or YYYY-MM-DD HH:MM")
        return None

    try:
        window = TimeWindow.from_bounds(start, end)
    except ValueError as e:
        st.error(f"❌ {e}")
        return None

    st.caption(f"📊 {window.duration_hours:.1f} hours")
    return window


def parse_serials(value: str) -> List[int]:
    """
    Parse a comma or whitespace separated list of machine serials.

    Raises:
        ValueError: If an entry is not a non-negative integer
    """
    serials = []
    for token in value.replace(",", " ").split():
        serial = int(token)
        if serial < 0:
            raise ValueError(f"Machine serial must not be negative: {serial}")
        serials.append(serial)
    return list(dict.fromkeys(serials))


def render_machine_selector(key_prefix: str = "report_machines") -> Optional[List[int]]:
    """
    Render the machine choice and return the selected serials.

    Returns None when every machine active in the window is wanted.
    """
    source = st.radio(
        "Machines:",
        options=[ALL_ACTIVE_MACHINES, "Selected serials"],
        key=f"{key_prefix}_source",
        horizontal=True
    )
    if source == ALL_ACTIVE_MACHINES:
        return None

    raw = st.text_input(
        "Machine serials:",
        value=st.session_state.get(f"{key_prefix}_value", ""),
        key=f"{key_prefix}_input",
        help="Comma separated, e.g. 67408, 67409"
    )
    try:
        serials = parse_serials(raw)
    except ValueError as e:
        st.error(f"❌ Invalid machine serials: {e}")
        return []
    st.session_state[f"{key_prefix}_value"] = raw
    return serials
