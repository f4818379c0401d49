"""
CASCADE - Main Application Entrypoint
Waterfall cohort workspace: pick a table, review its totals and cohorts, edit keyword mappings.
"""

import asyncio
import logging
import os

import streamlit as st

from components.project_tree import render_add_table_form, render_project_tree
from config.settings import configure_logging, load_settings
from state.models import User
from state.workspace import build_workspace
from utils.ensure_db import demo_instance, ensure_data_ready

_BASE_DIR = os.path.dirname(os.path.abspath(__file__))

settings = load_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# Ensure the local demo DB exists (runs generator once if missing)
ensure_data_ready()

st.set_page_config(
    page_title="CASCADE - Waterfall Cohorts",
    page_icon="🌊",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
    .stDeployButton {display: none;}
    .block-container { padding-top: 1.5rem; padding-bottom: 2rem; max-width: 100%; }
    [data-testid="stSidebar"] { min-width: 24rem; width: 24rem; }
    section[data-testid="stSidebarNav"], [data-testid="stSidebarNav"], [data-testid="stSidebarNavItems"] { display: none !important; }
</style>
""", unsafe_allow_html=True)

# One workspace per browser session; toasts are queued and rendered on the next run
if "workspace" not in st.session_state:
    workspace = build_workspace(settings)
    st.session_state["workspace"] = workspace
    st.session_state["pending_toasts"] = []
    workspace.toasts.add_listener(
        lambda message, status, queue=st.session_state["pending_toasts"]: queue.append((message, status))
    )
workspace = st.session_state["workspace"]

for message, status in st.session_state["pending_toasts"]:
    st.toast(message, icon={"error": "❌", "success": "✅", "warning": "⚠️"}.get(status, "ℹ️"))
st.session_state["pending_toasts"].clear()

# Sidebar branding
st.sidebar.markdown("""
# 🌊 CASCADE
**Waterfall Cohorts**

---
""")

user_id = st.sidebar.text_input("👤 User", value=settings["app"]["default_user"])
if user_id and st.session_state.get("user_id") != user_id:
    st.session_state["user_id"] = user_id
    asyncio.run(workspace.projects.init_projects(User(id=user_id)))

selected = render_project_tree(workspace)
if st.sidebar.button("Open demo table", help="Local DuckDB demo data"):
    selected = demo_instance(settings)
render_add_table_form(workspace, user_id)
if selected is not None:
    with st.spinner(f"Loading {selected.label()}…"):
        asyncio.run(workspace.instance.set_instance(selected))

st.sidebar.markdown("---")

page = st.sidebar.radio(
    "Navigate",
    ["🧮 Instance", "🗺️ Mappings"],
    label_visibility="collapsed",
)

st.sidebar.markdown("---")
st.sidebar.caption(f"User: {user_id or '-'} | v0.1.0")

# ─── Page Router ────────────────────────────────────────────────────────────

if page == "🧮 Instance":
    exec(open(os.path.join(_BASE_DIR, "pages", "01_instance_view.py")).read())

elif page == "🗺️ Mappings":
    exec(open(os.path.join(_BASE_DIR, "pages", "02_mappings.py")).read())
