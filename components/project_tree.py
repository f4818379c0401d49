"""
CASCADE - Sidebar project tree and add-table form.
Only translates clicks into project/instance engine calls.
"""

import asyncio

import streamlit as st

from state.models import Database, Instance, Project, SqlServer, Table
from state.workspace import Workspace
from utils.errors import QueryError


def render_add_table_form(workspace: Workspace, user_id: str) -> None:
    with st.sidebar.expander("➕ Add table", expanded=not workspace.projects.state.projects):
        with st.form("add_table", clear_on_submit=False):
            project_name = st.text_input("Project", value="Default")
            server = st.text_input("Server", value=workspace.settings["local_sql"]["demo_server"])
            is_remote = st.checkbox("Remote SQL Server", value=False)
            database = st.text_input("Database", value=workspace.settings["local_sql"]["demo_database"])
            table = st.text_input("Table", value=workspace.settings["local_sql"]["demo_table"])
            user = st.text_input("SQL user", value="")
            password = st.text_input("SQL password", value="", type="password")
            submitted = st.form_submit_button("Add")
        if submitted and project_name and server and database and table:
            project = Project(
                name=project_name,
                user_id=user_id,
                sql_servers=(SqlServer(
                    name=server,
                    is_remote=is_remote,
                    databases=(Database(database, server, (Table(table),), user, password),),
                ),),
            )
            asyncio.run(workspace.projects.add_project(project))
            st.rerun()
        render_table_browser(workspace)


def render_table_browser(workspace: Workspace) -> None:
    """List the tables of a local demo database so the form can be filled in."""
    local = workspace.settings["local_sql"]
    database = st.text_input("Browse local database", value=local["demo_database"], key="browse_db")
    if st.button("List tables", key="browse_tables") and database:
        listing = Instance(local["demo_server"], database, "")
        try:
            tables = asyncio.run(workspace.executor.list_tables(listing))
        except QueryError as e:
            st.error(f"Could not list tables: {e}")
            return
        st.caption(", ".join(tables) if tables else "No tables found.")


def render_project_tree(workspace: Workspace):
    """Render projects; returns the Instance the user clicked, or None."""
    selected = None
    state = workspace.projects.state
    st.sidebar.markdown("### 🗂️ Projects")
    if not state.projects:
        st.sidebar.caption("No projects yet. Add a table below.")
    for project in state.projects:
        status = state.sync_status.get(project.name)
        label = f"{project.name}" + (f"  ·  {status.value}" if status else "")
        with st.sidebar.expander(label, expanded=True):
            for instance in project.instances():
                col_open, col_delete = st.columns([5, 1])
                if col_open.button(f"{instance.database}.{instance.table}", key=f"open::{project.name}::{instance.cache_key()}",
                                   help=instance.server):
                    selected = instance
                if col_delete.button("✕", key=f"del::{project.name}::{instance.cache_key()}"):
                    asyncio.run(workspace.projects.delete_table(
                        project.name, instance.server, instance.database, instance.table
                    ))
                    st.rerun()
            with st.popover("Remove…"):
                for sql_server in project.sql_servers:
                    if st.button(f"Server {sql_server.name}", key=f"delsrv::{project.name}::{sql_server.name}"):
                        asyncio.run(workspace.projects.delete_sql_server(project.name, sql_server.name))
                        st.rerun()
                    for database in sql_server.databases:
                        if st.button(f"Database {sql_server.name}/{database.name}",
                                     key=f"deldb::{project.name}::{sql_server.name}::{database.name}"):
                            asyncio.run(workspace.projects.delete_database(project.name, sql_server.name, database.name))
                            st.rerun()
                if st.button(f"Project {project.name}", key=f"delproj::{project.name}", type="primary"):
                    asyncio.run(workspace.projects.delete_project(project.name))
                    st.rerun()
            if project.id and workspace.projects.api is not None:
                if st.button("⟳ Sync from server", key=f"sync::{project.name}"):
                    asyncio.run(workspace.projects.down_sync_project(project.name))
                    st.rerun()
    return selected
