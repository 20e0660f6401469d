"""
Metrics Display Functions

UI components for displaying machine KPIs, hourly state timelines, item
stacks and fault summaries.
"""

import streamlit as st
import pandas as pd
import plotly.graph_objects as go
import logging
from typing import List

from analysis.batch_reports import EntityFailure
from analysis.reports import MachineReport
from utils.formatting import format_duration_label, format_timestamp

logger = logging.getLogger(__name__)

STATE_COLORS = {
    "running": "#28a745",   # Green
    "paused": "#ffc107",    # Yellow
    "faulted": "#dc3545",   # Red
}


def display_kpi_metrics(report: MachineReport):
    """
    Display the machine's KPI cards.

    Shows runtime, downtime and the four performance ratios. Efficiency may
    exceed 100%.
    """
    kpis = report.performance.kpis
    percentages = kpis.to_percentage_dict()

    col1, col2, col3, col4, col5, col6 = st.columns(6)

    with col1:
        st.metric("Runtime", format_duration_label(kpis.runtime_ms))
    with col2:
        st.metric("Downtime", format_duration_label(kpis.downtime_ms))
    with col3:
        st.metric("Availability", f"{percentages['availability']:.1f}%")
    with col4:
        st.metric("Throughput", f"{percentages['throughput']:.1f}%")
    with col5:
        st.metric("Efficiency", f"{percentages['efficiency']:.1f}%")
    with col6:
        st.metric("OEE", f"{percentages['oee']:.1f}%")

    st.caption(
        f"{kpis.total_count} counts ({kpis.misfeed_count} misfeeds), "
        f"{kpis.pieces_per_hour:.1f} pieces/hour"
    )


def display_state_timeline(report: MachineReport):
    """
    Display the hourly state breakdown as a stacked bar chart.

    Hours with more than 5% faulted time are listed below the chart.
    """
    hourly_df = report.state_breakdown

    if hourly_df.empty:
        st.info("No hourly state data available for this machine")
        return

    fig = go.Figure()
    for category, color in STATE_COLORS.items():
        fig.add_trace(go.Bar(
            x=hourly_df['hour_start'],
            y=hourly_df[f'{category}_percent'],
            name=category.capitalize(),
            marker_color=color,
            hovertemplate=f'%{{x|%H:%M}}<br>%{{y:.1f}}% {category.capitalize()}<extra></extra>'
        ))

    fig.update_layout(
        barmode='stack',
        xaxis_title='Hour',
        yaxis_title='Percentage (%)',
        height=350,
        hovermode='x unified',
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        xaxis=dict(type='date', tickformat='%H:%M', dtick=3600000)
    )
    st.plotly_chart(fig, use_container_width=True)

    problematic_hours = hourly_df[hourly_df['faulted_percent'] > 5]
    if not problematic_hours.empty:
        st.warning("⚠️ **Hours with high fault time:**")
        for _, row in problematic_hours.iterrows():
            st.text(f"  • {row['hour_start'].strftime('%H:%M')}: {row['faulted_percent']:.1f}% faulted")


def display_item_hourly_stack(report: MachineReport):
    """Display counts per item for each hour of the window."""
    stack = report.item_hourly_stack

    if not stack.items:
        st.info("No counts recorded in this window")
        return

    fig = go.Figure()
    for item_name, counts in stack.items.items():
        fig.add_trace(go.Bar(x=stack.hours, y=counts, name=item_name))

    fig.update_layout(
        barmode='stack',
        xaxis_title='Hours from window start',
        yaxis_title='Count',
        height=350,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
    )
    st.plotly_chart(fig, use_container_width=True)


def display_fault_summary(report: MachineReport):
    """Display the fault summary table, longest total fault time first."""
    fault_df = report.fault_data.summary_dataframe()

    if fault_df.empty:
        st.success("No faults in this window")
        return

    display_df = pd.DataFrame({
        'Fault': fault_df['fault_name'],
        'Code': fault_df['fault_code'],
        'Occurrences': fault_df['occurrence_count'],
        'Total Time': fault_df['total_duration_ms'].apply(format_duration_label),
    })
    st.dataframe(display_df, use_container_width=True, hide_index=True)


def display_machine_report(report: MachineReport):
    """Display every section of one machine's report."""
    st.subheader(
        f"🏭 Machine {report.machine_serial} "
        f"({format_timestamp(report.window.start)} → {format_timestamp(report.window.end)})"
    )
    display_kpi_metrics(report)

    tab_states, tab_items, tab_faults = st.tabs(["States", "Items", "Faults"])
    with tab_states:
        display_state_timeline(report)
    with tab_items:
        display_item_hourly_stack(report)
    with tab_faults:
        display_fault_summary(report)


def display_failures(failures: List[EntityFailure]):
    """List machines whose reports could not be built."""
    for failure in failures:
        st.warning(f"⚠️ Machine {failure.entity_id}: {failure.error_type}: {failure.message}")
