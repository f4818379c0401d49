"""
CASCADE - Mappings editor.
One tab per keyword; Waterfall_Group is the only editable column.
"""

import asyncio
import io

import streamlit as st

from components.tables import changed_waterfall_groups, mapping_editor_frame
from state.models import LoadStatus, User
from utils.errors import MappingsBusyError
from utils.export import export_file_name, export_mapping_to_excel

workspace = st.session_state["workspace"]
user = User(id=st.session_state.get("user_id", ""))
instance_state = workspace.instance.state

st.title("🗺️ Mappings")

if instance_state.view is None or instance_state.status == LoadStatus.LOADING:
    st.info("Select and load a table first.")
    st.stop()

view = instance_state.view
asyncio.run(workspace.mappings.set_mappings_state(view))
workspace.instance.recompute_cohort_lists()
mappings = workspace.mappings.state.mappings

col_refresh, col_save, _ = st.columns([1, 1, 4])
if col_refresh.button("⟳ Refresh from database"):
    with st.spinner("Refreshing mappings…"):
        asyncio.run(workspace.mappings.refresh_mappings_state(view))
        workspace.instance.recompute_cohort_lists()
    st.rerun()
if col_save.button("💾 Save mappings"):
    _, result = asyncio.run(workspace.instance.upsync_current_mappings(user if user.id else None))
    if result.failed:
        st.error("Not saved: " + ", ".join(result.failed))

if not mappings:
    st.caption("No mapping tabs for this table.")
    st.stop()

tabs = st.tabs([m.tab_name for m in mappings])
for mapping_index, (tab, mapping) in enumerate(zip(tabs, mappings)):
    with tab:
        before = mapping_editor_frame(mapping)
        after = st.data_editor(
            before,
            key=f"editor::{view.instance.cache_key(mapping.tab_name)}",
            use_container_width=True,
            hide_index=True,
            disabled=[c for c in before.columns if c != "Waterfall_Group"],
        )
        try:
            for row_index, value in changed_waterfall_groups(before, after):
                workspace.mappings.modify_waterfall_group(mapping_index, row_index, value)
        except MappingsBusyError as e:
            st.warning(str(e))

        buffer = io.BytesIO()
        export_mapping_to_excel(workspace.mappings.state.mappings[mapping_index], buffer)
        st.download_button(
            "⬇️ Export to Excel",
            data=buffer.getvalue(),
            file_name=export_file_name(mapping),
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            key=f"export::{mapping.tab_name}",
        )
