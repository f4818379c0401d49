"""
CASCADE - Workspace wiring.
Builds endpoints, cache stores and the three state engines from settings.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import load_settings, resolve_path
from state.instance_state import InstanceStateEngine
from state.mappings_state import MappingsStateEngine
from state.projects_state import ProjectsStateEngine
from utils.api_client import ApiClient, ProjectsApi
from utils.cache_store import CacheStore
from utils.mapping_discovery import MappingDiscovery
from utils.notifications import ToastEvents, toast_events
from utils.query_executor import QueryExecutor
from utils.sql_endpoints import DuckDBEndpoint, SqlServerEndpoint

logger = logging.getLogger(__name__)

QUERY_CACHE = "query_cache"
MAPPING_STATE_CACHE = "mapping_state"


@dataclass
class Workspace:
    settings: dict
    toasts: ToastEvents
    query_cache: CacheStore
    mapping_cache: CacheStore
    executor: QueryExecutor
    discovery: MappingDiscovery
    projects: ProjectsStateEngine
    mappings: MappingsStateEngine
    instance: InstanceStateEngine

    async def close(self) -> None:
        await self.query_cache.close()
        await self.mapping_cache.close()


def build_workspace(settings: dict = None, toasts: Optional[ToastEvents] = None, api_client: Optional[ApiClient] = None) -> Workspace:
    settings = settings or load_settings()
    toasts = toasts or toast_events

    cache_path = resolve_path(settings["cache"]["path"])
    version = int(settings["cache"]["version"])
    query_cache = CacheStore(cache_path, QUERY_CACHE, version)
    mapping_cache = CacheStore(cache_path, MAPPING_STATE_CACHE, version)

    sql = settings["sql_server"]
    executor = QueryExecutor(
        local_endpoint=DuckDBEndpoint(resolve_path(settings["local_sql"]["data_dir"])),
        remote_endpoint=SqlServerEndpoint(
            driver=sql["driver"],
            port=int(sql["port"]),
            encrypt=bool(sql["encrypt"]),
            trust_server_certificate=bool(sql["trust_server_certificate"]),
            timeout=int(sql["timeout"]),
        ),
    )
    discovery = MappingDiscovery(executor, query_cache, settings["mappings"]["keywords"])

    if api_client is None and settings["api"]["base_url"]:
        api_client = ApiClient(settings["api"]["base_url"], timeout=float(settings["api"]["timeout"]))
    projects_api = ProjectsApi(api_client) if api_client is not None else None
    if projects_api is None:
        logger.info("No persistence endpoint configured, running offline")

    mappings = MappingsStateEngine(discovery, mapping_cache, projects_api, toasts)
    return Workspace(
        settings=settings,
        toasts=toasts,
        query_cache=query_cache,
        mapping_cache=mapping_cache,
        executor=executor,
        discovery=discovery,
        projects=ProjectsStateEngine(projects_api, toasts),
        mappings=mappings,
        instance=InstanceStateEngine(executor, discovery, mappings, toasts),
    )
