"""
CASCADE - Mapping discovery.
Finds which known keywords an instance table carries, counts their distinct group
pairs and fetches the aggregated rows behind each keyword tab.
Group counts and mapping rows are memoized in the cache store; the keyword set is
always read live from the schema.
"""

import logging
from typing import Any, Dict, List, Sequence

from state.models import Instance
from utils.cache_store import CacheStore
from utils.query_executor import QueryExecutor, contains, group_aliases

logger = logging.getLogger(__name__)

DEFAULT_KEYWORDS = ("Procedure", "Provider", "Insurance", "Location")

WATERFALL_GROUP = "Waterfall_Group"


def count_cache_key(instance: Instance, keyword: str) -> str:
    return instance.cache_key(keyword, "count")


def rows_cache_key(instance: Instance, keyword: str) -> str:
    return instance.cache_key(keyword, "rows")


def with_waterfall_group(rows: Sequence[Dict[str, Any]], keyword: str) -> List[Dict[str, Any]]:
    """Copy rows and set Waterfall_Group from the keyword's Group_Final value."""
    _, final_alias = group_aliases(keyword)
    return [{**row, WATERFALL_GROUP: row.get(final_alias)} for row in rows]


class MappingDiscovery:
    def __init__(self, executor: QueryExecutor, cache: CacheStore, keywords: Sequence[str] = DEFAULT_KEYWORDS):
        self.executor = executor
        self.cache = cache
        self.keywords = tuple(keywords)

    async def discover_keywords(self, instance: Instance) -> List[str]:
        """Known keywords with at least one matching column, in configured order."""
        columns = await self.executor.list_columns(instance)
        found = [kw for kw in self.keywords if any(contains(c, kw) for c in columns)]
        logger.info("Keywords on %s: %s", instance.label(), found or "none")
        return found

    async def count_groups(self, instance: Instance, keyword: str) -> int:
        """Number of distinct (Group_Final, Group) pairs for a keyword. Memoized."""
        key = count_cache_key(instance, keyword)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Group count for %s/%s served from cache", instance.label(), keyword)
            return int(cached)

        columns = await self.executor.resolve_group_columns(instance, keyword)
        table_sql = await self.executor.table_identifier(instance)
        rows = await self.executor.execute(
            instance, self.executor.build_group_count_query(instance, table_sql, columns)
        )
        count = int(rows[0]["ROW_COUNT"]) if rows else 0
        await self.cache.put(key, count)
        return count

    async def fetch_mapping_rows(self, instance: Instance, keyword: str, fresh: bool = False) -> List[Dict[str, Any]]:
        """Aggregated rows for a keyword tab, each with Waterfall_Group synced to Group_Final.

        The memo is read before any schema lookup, so a warm tab is served while the SQL
        endpoint is down. fresh=True skips the memo and re-runs the aggregation.
        """
        key = rows_cache_key(instance, keyword)
        if not fresh:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug("Mapping rows for %s/%s served from cache", instance.label(), keyword)
                return with_waterfall_group(cached, keyword)

        columns = await self.executor.resolve_group_columns(instance, keyword)
        table_sql = await self.executor.table_identifier(instance)
        query = self.executor.build_mapping_query(instance, table_sql, keyword, columns)
        rows = await self.executor.execute(instance, query)
        await self.cache.put(key, rows)
        return with_waterfall_group(rows, keyword)
