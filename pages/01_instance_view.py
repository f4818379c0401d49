"""
CASCADE - Instance view.
Numeric totals, waterfall cohorts and the DOS / Posting / keyword pivot for the selected table.
"""

import streamlit as st

from components.kpi_cards import render_numeric_totals
from components.tables import cohorts_frame, numeric_frame, pivot_frame
from state.models import LoadStatus

workspace = st.session_state["workspace"]
snapshot = workspace.instance.state

st.title("🧮 Instance")

if snapshot.instance is None:
    st.info("Select a table in the sidebar to load it.")
    st.stop()

st.caption(f"{snapshot.instance.server} / {snapshot.instance.database} / {snapshot.instance.table}")

if snapshot.status == LoadStatus.LOADING or snapshot.view is None:
    st.warning("Loading…")
    st.stop()

view = snapshot.view
if snapshot.status == LoadStatus.READY_WITH_ERRORS:
    with st.expander(f"⚠️ Loaded with {len(snapshot.errors)} error(s)"):
        for error in snapshot.errors:
            st.write(error)

# ─── Numeric totals ─────────────────────────────────────────────────────────

st.subheader("Numeric fields")
if view.numeric_table_data:
    render_numeric_totals(view.numeric_table_data)
    st.dataframe(numeric_frame(view.numeric_table_data), use_container_width=True, hide_index=True)
else:
    st.caption("No numeric totals available.")

st.markdown("---")

# ─── Waterfall cohorts ──────────────────────────────────────────────────────

st.subheader("Waterfall cohorts")
if view.waterfall_cohorts_table_data:
    st.dataframe(cohorts_frame(view.waterfall_cohorts_table_data), use_container_width=True, hide_index=True)
else:
    st.caption("No mapping keywords found on this table.")

st.subheader("Cohort lists")
st.caption("Keyword columns fill in once the Mappings page has been opened.")
st.dataframe(pivot_frame(view.waterfall_cohort_list_data), use_container_width=True, hide_index=True)
