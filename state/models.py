"""
CASCADE - Data model.
Frozen dataclasses and tuples only; engines derive new snapshots with dataclasses.replace
and reuse untouched members.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


KEY_SEPARATOR = "::"


class LoadStatus(str, Enum):
    UNSET = "unset"
    LOADING = "loading"
    READY = "ready"
    READY_WITH_ERRORS = "ready_with_errors"


class SyncStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class SqlCredentials:
    user: str = ""
    password: str = field(default="", repr=False)


@dataclass(frozen=True)
class Instance:
    """One (server, database, table) triple, the unit of analysis."""

    server: str
    database: str
    table: str
    is_remote: bool = False
    credentials: Optional[SqlCredentials] = field(default=None, compare=False)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.server, self.database, self.table)

    def cache_key(self, *parts: str) -> str:
        return KEY_SEPARATOR.join([self.server, self.database, self.table, *parts])

    def label(self) -> str:
        return f"{self.server}/{self.database}/{self.table}"


@dataclass(frozen=True)
class User:
    id: str
    email: str = ""
    display_name: Optional[str] = None


# ─── Instance view ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NumericField:
    field_name: str
    type: str
    total: Optional[float] = None
    include: str = "Y"
    divide_by: str = "Y"
    schedule: str = "Y"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "type": self.type,
            "include": self.include,
            "divideBy": self.divide_by,
            "schedule": self.schedule,
            "total": self.total,
        }


@dataclass(frozen=True)
class CohortRow:
    waterfall_cohort_name: str
    count: int = 0
    run: bool = True
    aggregate: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "waterfallCohortName": self.waterfall_cohort_name,
            "run": self.run,
            "aggregate": self.aggregate,
            "count": self.count,
        }


@dataclass(frozen=True)
class InstanceView:
    instance: Instance
    numeric_table_data: Tuple[NumericField, ...] = ()
    waterfall_cohorts_table_data: Tuple[CohortRow, ...] = ()
    # column name -> distinct values; "DOS", "Posting", then one column per keyword
    waterfall_cohort_list_data: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def keywords(self) -> Tuple[str, ...]:
        return tuple(row.waterfall_cohort_name for row in self.waterfall_cohorts_table_data)


# ─── Mappings ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Mapping:
    """One keyword tab: aggregated rows with an editable Waterfall_Group column."""

    tab_name: str
    keyword: str
    data: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"tabName": self.tab_name, "keyword": self.keyword, "data": [dict(r) for r in self.data]}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Mapping":
        return cls(
            tab_name=payload["tabName"],
            keyword=payload.get("keyword") or payload["tabName"],
            data=tuple(dict(r) for r in payload.get("data") or ()),
        )


# ─── Project tree ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Table:
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Table":
        return cls(name=payload["name"])


@dataclass(frozen=True)
class Database:
    name: str
    server: str
    tables: Tuple[Table, ...] = ()
    user: str = ""
    password: str = field(default="", repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "server": self.server,
            "tables": [t.to_dict() for t in self.tables],
            "user": self.user,
            "password": self.password,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Database":
        return cls(
            name=payload["name"],
            server=payload.get("server", ""),
            tables=tuple(Table.from_dict(t) for t in payload.get("tables") or ()),
            user=payload.get("user") or "",
            password=payload.get("password") or "",
        )


@dataclass(frozen=True)
class SqlServer:
    name: str
    is_remote: bool = False
    databases: Tuple[Database, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "isRemote": self.is_remote,
            "databases": [d.to_dict() for d in self.databases],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SqlServer":
        return cls(
            name=payload["name"],
            is_remote=bool(payload.get("isRemote", False)),
            databases=tuple(Database.from_dict(d) for d in payload.get("databases") or ()),
        )


@dataclass(frozen=True)
class Project:
    name: str
    user_id: str
    sql_servers: Tuple[SqlServer, ...] = ()
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "name": self.name,
            "userId": self.user_id,
            "sqlServerViewModels": [s.to_dict() for s in self.sql_servers],
        }
        if self.id is not None:
            payload["id"] = self.id
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Project":
        return cls(
            id=payload.get("id"),
            name=payload["name"],
            user_id=payload.get("userId", ""),
            sql_servers=tuple(SqlServer.from_dict(s) for s in payload.get("sqlServerViewModels") or ()),
        )

    def with_id(self, project_id: str) -> "Project":
        return replace(self, id=project_id)

    def instances(self):
        """Yield an Instance for every table in the tree."""
        for server in self.sql_servers:
            for database in server.databases:
                creds = SqlCredentials(database.user, database.password)
                for table in database.tables:
                    yield Instance(server.name, database.name, table.name, server.is_remote, creds)
