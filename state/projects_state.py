"""
CASCADE - Project tree state engine.
Projects are merged and pruned locally first, then persisted. A failed persistence
call is reported and recorded in sync_status; local state is not rolled back.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from state.models import Database, Project, SqlServer, SyncStatus, User
from state.store import StateStore
from utils.api_client import ProjectsApi
from utils.errors import PersistenceError
from utils.notifications import ToastEvents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectsSnapshot:
    projects: Tuple[Project, ...] = ()
    # project name -> last known persistence outcome
    sync_status: Dict[str, SyncStatus] = field(default_factory=dict)


# ─── Pure tree operations ───────────────────────────────────────────────────

def _merge_by_name(existing: Tuple, incoming: Tuple, merge_one) -> Tuple:
    merged = list(existing)
    index = {item.name: i for i, item in enumerate(merged)}
    for item in incoming:
        if item.name in index:
            i = index[item.name]
            merged[i] = merge_one(merged[i], item)
        else:
            index[item.name] = len(merged)
            merged.append(item)
    return tuple(merged)


def _merge_databases(old: Database, new: Database) -> Database:
    tables = _merge_by_name(old.tables, new.tables, lambda a, b: a)
    return replace(
        old,
        tables=tables,
        user=new.user or old.user,
        password=new.password or old.password,
    )


def _merge_servers(old: SqlServer, new: SqlServer) -> SqlServer:
    return replace(
        old,
        is_remote=new.is_remote,
        databases=_merge_by_name(old.databases, new.databases, _merge_databases),
    )


def merge_projects(old: Project, new: Project) -> Project:
    """Deep merge by name at server, database and table level. Nothing is duplicated."""
    return replace(
        old,
        id=old.id or new.id,
        sql_servers=_merge_by_name(old.sql_servers, new.sql_servers, _merge_servers),
    )


def prune_project(
    project: Project,
    server: str,
    database: Optional[str] = None,
    table: Optional[str] = None,
) -> Optional[Project]:
    """Remove a server, a database or a table, then drop anything left empty.

    Returns None when the project no longer holds any table.
    """
    servers = []
    for srv in project.sql_servers:
        if srv.name != server:
            servers.append(srv)
            continue
        if database is None:
            continue
        databases = []
        for db in srv.databases:
            if db.name != database:
                databases.append(db)
                continue
            if table is None:
                continue
            tables = tuple(t for t in db.tables if t.name != table)
            if tables:
                databases.append(db if len(tables) == len(db.tables) else replace(db, tables=tables))
        if databases:
            unchanged = len(databases) == len(srv.databases) and all(
                a is b for a, b in zip(databases, srv.databases)
            )
            servers.append(srv if unchanged else replace(srv, databases=tuple(databases)))
    if not servers:
        return None
    return replace(project, sql_servers=tuple(servers))


# ─── Engine ─────────────────────────────────────────────────────────────────

class ProjectsStateEngine(StateStore[ProjectsSnapshot]):
    def __init__(self, api: Optional[ProjectsApi] = None, toasts: Optional[ToastEvents] = None):
        super().__init__(ProjectsSnapshot(), toasts)
        self.api = api

    def get_project(self, name: str) -> Optional[Project]:
        for project in self.state.projects:
            if project.name == name:
                return project
        return None

    def _replace_project(self, name: str, project: Optional[Project]) -> None:
        projects = []
        found = False
        for p in self.state.projects:
            if p.name == name:
                found = True
                if project is not None:
                    projects.append(project)
            else:
                projects.append(p)
        if not found and project is not None:
            projects.append(project)
        status = dict(self.state.sync_status)
        if project is None:
            status.pop(name, None)
        self._commit(replace(self.state, projects=tuple(projects), sync_status=status))

    def _set_status(self, name: str, status: SyncStatus) -> None:
        sync_status = {**self.state.sync_status, name: status}
        self._commit(replace(self.state, sync_status=sync_status))

    def _persistence_failed(self, name: str, action: str, error: PersistenceError) -> None:
        logger.error("%s project %s failed: %s (status %s)", action, name, error, error.status_code)
        if self.get_project(name) is not None:
            self._set_status(name, SyncStatus.FAILED)
        self.toasts.emit(f"Could not {action.lower()} project {name}: {error}", "error")

    # ─── Remote sync ───────────────────────────────────────────────────────

    async def init_projects(self, user: User) -> Tuple[Project, ...]:
        """Replace local projects with the user's projects from the server."""
        if self.api is None:
            return self.state.projects
        try:
            projects = await self.api.list_projects(user.id)
        except PersistenceError as e:
            logger.error("Loading projects for %s failed: %s", user.id, e)
            self.toasts.emit(f"Could not load projects: {e}", "error")
            return self.state.projects
        status = {p.name: SyncStatus.CONFIRMED for p in projects}
        self._commit(ProjectsSnapshot(projects=tuple(projects), sync_status=status))
        logger.info("Loaded %d projects for %s", len(projects), user.id)
        return self.state.projects

    async def down_sync_project(self, name: str) -> Optional[Project]:
        """Replace a local project with the server copy."""
        project = self.get_project(name)
        if project is None or project.id is None or self.api is None:
            return project
        try:
            remote = await self.api.get_project(project.id)
        except PersistenceError as e:
            self._persistence_failed(name, "Refresh", e)
            return project
        self._replace_project(name, remote)
        self._set_status(remote.name, SyncStatus.CONFIRMED)
        return remote

    async def _persist(self, name: str) -> None:
        project = self.get_project(name)
        if self.api is None or project is None:
            return
        self._set_status(name, SyncStatus.PENDING)
        try:
            if project.id:
                await self.api.update_project(project)
            else:
                created = await self.api.create_project(project)
                # a newer local edit may have landed while the POST was in flight
                current = self.get_project(name) or project
                self._replace_project(name, current.with_id(created.id))
        except PersistenceError as e:
            self._persistence_failed(name, "Save", e)
            return
        self._set_status(name, SyncStatus.CONFIRMED)

    # ─── Mutations ─────────────────────────────────────────────────────────

    async def add_project(self, project: Project) -> Project:
        """Merge into an existing project of the same name (or add it), then persist."""
        existing = self.get_project(project.name)
        merged = merge_projects(existing, project) if existing else project
        self._replace_project(project.name, merged)
        await self._persist(project.name)
        return self.get_project(project.name)

    async def _prune(self, name: str, server: str, database: Optional[str] = None, table: Optional[str] = None) -> Optional[Project]:
        project = self.get_project(name)
        if project is None:
            logger.warning("Project %s not found", name)
            return None
        pruned = prune_project(project, server, database, table)
        if pruned is None:
            await self.delete_project(name)
            return None
        self._replace_project(name, pruned)
        await self._persist(name)
        return pruned

    async def delete_table(self, name: str, server: str, database: str, table: str) -> Optional[Project]:
        return await self._prune(name, server, database, table)

    async def delete_database(self, name: str, server: str, database: str) -> Optional[Project]:
        return await self._prune(name, server, database)

    async def delete_sql_server(self, name: str, server: str) -> Optional[Project]:
        return await self._prune(name, server)

    async def delete_project(self, name: str) -> None:
        project = self.get_project(name)
        if project is None:
            return
        self._replace_project(name, None)
        if self.api is None or project.id is None:
            return
        try:
            await self.api.delete_project(project.id)
        except PersistenceError as e:
            self._persistence_failed(name, "Delete", e)
