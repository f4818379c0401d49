"""
CASCADE - Query executor.
All SQL the engines run is built here. Table names are checked against
INFORMATION_SCHEMA.TABLES, column names only ever come from INFORMATION_SCHEMA.COLUMNS,
and every identifier is quoted for the endpoint's dialect before interpolation.
"""

import logging
from collections import namedtuple
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from state.models import Instance
from utils.errors import InvalidIdentifierError, SchemaMismatch
from utils.sql_endpoints import SqlEndpoint

logger = logging.getLogger(__name__)

# (display name, kind, result alias, aggregate, source column)
NUMERIC_FIELDS = [
    ("Charge Amount", "Amount", "Total_Charge_Amount", "SUM", "Charge_Amount"),
    ("Payment Amount", "Amount", "Total_Payment_Amount", "SUM", "Payment_Amount"),
    ("Unit", "Amount", "Total_Unit", "SUM", "Unit"),
    ("Final Charge Count", "Count", "Final_Charge_Count", "COUNT", "Final_Charge_Count"),
    ("Final Charge Count w Payment", "Count", "Final_Charge_w_Payment", "COUNT", "Final_Charge_Count_w_Payment"),
    ("Final Visit Count", "Count", "Final_Visit_Count", "COUNT", "Final_Visit_Count"),
    ("Final Visit Count w Payment", "Count", "Final_Visit_w_Payment", "COUNT", "Final_Visit_Count_w_Payment"),
]

DOS_COLUMN = "DOS_Period"
POSTING_COLUMN = "Posting_Period"

GroupColumns = namedtuple("GroupColumns", ["group", "group_final"])


def contains(column: str, fragment: str) -> bool:
    """Case-insensitive substring test used for every column-name pattern."""
    return fragment.casefold() in column.casefold()


def group_aliases(keyword: str):
    """Row keys used for a keyword tab regardless of the underlying column names."""
    return f"{keyword}_Group", f"{keyword}_Group_Final"


class QueryExecutor:
    """Routes instances to their endpoint and builds dialect-correct SQL."""

    def __init__(self, local_endpoint: SqlEndpoint, remote_endpoint: Optional[SqlEndpoint] = None):
        self.local_endpoint = local_endpoint
        self.remote_endpoint = remote_endpoint

    def endpoint_for(self, instance: Instance) -> SqlEndpoint:
        if instance.is_remote:
            if self.remote_endpoint is None:
                raise InvalidIdentifierError(f"No remote SQL endpoint configured for {instance.server}")
            return self.remote_endpoint
        return self.local_endpoint

    def quote(self, instance: Instance, name: str) -> str:
        return self.endpoint_for(instance).quote_identifier(name)

    async def execute(self, instance: Instance, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await self.endpoint_for(instance).execute(instance, query, params)

    # ─── Introspection ─────────────────────────────────────────────────────

    async def list_tables(self, instance: Instance) -> List[str]:
        rows = await self.execute(
            instance,
            "SELECT TABLE_NAME AS table_name FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE IN ('BASE TABLE', 'VIEW') ORDER BY TABLE_NAME",
        )
        return [r["table_name"] for r in rows]

    async def list_columns(self, instance: Instance) -> List[str]:
        rows = await self.execute(
            instance,
            "SELECT COLUMN_NAME AS column_name FROM INFORMATION_SCHEMA.COLUMNS WHERE TABLE_NAME = ?",
            [instance.table],
        )
        return sorted(r["column_name"] for r in rows)

    async def table_identifier(self, instance: Instance) -> str:
        """Quoted table name, after confirming the table exists."""
        if instance.table not in await self.list_tables(instance):
            raise InvalidIdentifierError(f"Table {instance.table!r} not found in {instance.database}")
        return self.quote(instance, instance.table)

    async def find_columns_matching(self, instance: Instance, fragment: str) -> List[str]:
        """Columns of the instance table containing `fragment` (any case), lexicographically sorted."""
        return [c for c in await self.list_columns(instance) if contains(c, fragment)]

    async def resolve_group_columns(self, instance: Instance, keyword: str) -> GroupColumns:
        """Find the `<keyword>_Group` and `<keyword>_Group_Final` columns.

        When several columns match, the lexicographically first one wins. Columns that
        match `<keyword>_Group_Final` are never taken as the plain group column.
        Matching ignores case, like LIKE under SQL Server's default collation.
        """
        columns = await self.list_columns(instance)
        final_fragment = f"{keyword}_Group_Final"
        group_fragment = f"{keyword}_Group"
        finals = [c for c in columns if contains(c, final_fragment)]
        groups = [c for c in columns if contains(c, group_fragment) and not contains(c, final_fragment)]
        if not finals or not groups:
            raise SchemaMismatch(
                f"{instance.label()} has no {group_fragment}/{final_fragment} column pair"
            )
        if len(finals) > 1 or len(groups) > 1:
            logger.info(
                "Multiple %s columns on %s, using %s / %s", keyword, instance.label(), groups[0], finals[0]
            )
        return GroupColumns(group=groups[0], group_final=finals[0])

    # ─── Query builders ────────────────────────────────────────────────────

    def build_numeric_totals_query(self, instance: Instance, table_sql: str) -> str:
        q = partial(self.quote, instance)
        selects = ",\n    ".join(
            f"{agg}({q(column)}) AS {q(alias)}" for _, _, alias, agg, column in NUMERIC_FIELDS
        )
        return f"SELECT\n    {selects}\nFROM {table_sql}"

    def build_group_count_query(self, instance: Instance, table_sql: str, columns: GroupColumns) -> str:
        q = partial(self.quote, instance)
        final, group = q(columns.group_final), q(columns.group)
        return (
            f"SELECT COUNT(*) AS ROW_COUNT FROM (\n"
            f"    SELECT {final}, {group}\n"
            f"    FROM {table_sql}\n"
            f"    GROUP BY {final}, {group}\n"
            f") AS grouped_data"
        )

    def build_mapping_query(self, instance: Instance, table_sql: str, keyword: str, columns: GroupColumns) -> str:
        q = partial(self.quote, instance)
        final, group = q(columns.group_final), q(columns.group)
        group_alias, final_alias = group_aliases(keyword)
        return (
            f"SELECT\n"
            f"    {final} AS {q(final_alias)},\n"
            f"    {group} AS {q(group_alias)},\n"
            f"    SUM({q('Charge_Amount')}) AS {q('Total_Charge_Amount')},\n"
            f"    SUM({q('Payment_Amount')}) AS {q('Total_Payment_Amount')},\n"
            f"    MIN({q(DOS_COLUMN)}) AS {q('Earliest_Min_DOS')},\n"
            f"    MAX({q(DOS_COLUMN)}) AS {q('Latest_Max_DOS')}\n"
            f"FROM {table_sql}\n"
            f"GROUP BY {final}, {group}\n"
            f"ORDER BY {final}, {group}"
        )

    def build_distinct_values_query(self, instance: Instance, table_sql: str, column: str) -> str:
        col = self.quote(instance, column)
        return (
            f"SELECT DISTINCT {col} AS {self.quote(instance, 'value')} FROM {table_sql} "
            f"WHERE {col} IS NOT NULL ORDER BY 1"
        )

    # ─── Fetchers ──────────────────────────────────────────────────────────

    async def fetch_numeric_totals(self, instance: Instance) -> Dict[str, Any]:
        table_sql = await self.table_identifier(instance)
        rows = await self.execute(instance, self.build_numeric_totals_query(instance, table_sql))
        return rows[0] if rows else {}

    async def fetch_distinct_values(self, instance: Instance, column: str) -> List[str]:
        """Sorted distinct non-null values of a column; empty when the column is absent."""
        if column not in await self.list_columns(instance):
            raise SchemaMismatch(f"{instance.label()} has no {column} column")
        table_sql = await self.table_identifier(instance)
        rows = await self.execute(instance, self.build_distinct_values_query(instance, table_sql, column))
        return [str(r["value"]) for r in rows]
