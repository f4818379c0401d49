"""
Pytest Configuration and Fixtures
==================================
Shared fixtures for the CASCADE test suite. SQL runs against small DuckDB files
built per test; failures and latency are injected through ScriptedEndpoint.
"""

import asyncio
import os

import duckdb
import pytest

from state.instance_state import InstanceStateEngine
from state.mappings_state import MappingsStateEngine
from state.models import Instance
from utils.cache_store import CacheStore
from utils.errors import QueryError
from utils.mapping_discovery import MappingDiscovery
from utils.notifications import ToastEvents
from utils.query_executor import QueryExecutor
from utils.sql_endpoints import DuckDBEndpoint, SqlEndpoint

DATABASE = "Billing"

_CLAIMS_DDL = """
CREATE TABLE Claims (
    Charge_Amount DOUBLE, Payment_Amount DOUBLE, Unit INTEGER,
    Final_Charge_Count INTEGER, Final_Charge_Count_w_Payment INTEGER,
    Final_Visit_Count INTEGER, Final_Visit_Count_w_Payment INTEGER,
    DOS_Period VARCHAR, Posting_Period VARCHAR,
    Procedure_Group VARCHAR, Procedure_Group_Final VARCHAR,
    Insurance_Group VARCHAR, Insurance_Group_Final VARCHAR
)
"""

CLAIMS_ROWS = [
    (100.0, 60.0, 1, 1, 1, 1, 1, "2024-01", "2024-02", "99213", "E&M", "Aetna PPO", "Commercial"),
    (200.0, 0.0, 2, 1, None, None, None, "2024-01", "2024-01", "99213", "E&M", "Medicare B", "Medicare"),
    (300.0, 150.0, 1, 1, 1, 1, 1, "2024-02", "2024-03", "71046", "Radiology", "Aetna PPO", "Commercial"),
    (50.0, 25.0, 1, 1, 1, None, None, "2024-03", "2024-03", "80053", "Laboratory", "Self Pay", "Self Pay"),
]

_PAYER_DDL = """
CREATE TABLE Payer_Only (
    Charge_Amount DOUBLE, Payment_Amount DOUBLE, Unit INTEGER,
    Final_Charge_Count INTEGER, Final_Charge_Count_w_Payment INTEGER,
    Final_Visit_Count INTEGER, Final_Visit_Count_w_Payment INTEGER,
    DOS_Period VARCHAR, Posting_Period VARCHAR,
    Insurance_Group VARCHAR, Insurance_Group_Final VARCHAR,
    Location_Code VARCHAR
)
"""

PAYER_ROWS = [
    (10.0, 5.0, 1, 1, 1, 1, 1, "2024-05", "2024-05", "BCBS HMO", "Commercial", "L01"),
    (20.0, 0.0, 1, 1, None, 1, None, "2024-06", "2024-07", "State Medicaid", "Medicaid", "L02"),
]

_AMBIGUOUS_DDL = """
CREATE TABLE Ambiguous (
    Charge_Amount DOUBLE, Payment_Amount DOUBLE, DOS_Period VARCHAR,
    Procedure_Group VARCHAR, Procedure_Group_Final VARCHAR,
    Alt_Procedure_Group VARCHAR, Alt_Procedure_Group_Final VARCHAR
)
"""

_LOWER_DDL = """
CREATE TABLE Lower_Case (
    Charge_Amount DOUBLE, DOS_Period VARCHAR,
    procedure_group VARCHAR, procedure_group_final VARCHAR
)
"""

def build_billing_db(path: str) -> None:
    con = duckdb.connect(path)
    try:
        con.execute(_CLAIMS_DDL)
        con.executemany("INSERT INTO Claims VALUES (" + ", ".join(["?"] * 13) + ")", CLAIMS_ROWS)
        con.execute(_PAYER_DDL)
        con.executemany("INSERT INTO Payer_Only VALUES (" + ", ".join(["?"] * 12) + ")", PAYER_ROWS)
        con.execute(_AMBIGUOUS_DDL)
        con.execute(
            "INSERT INTO Ambiguous VALUES (1.0, 1.0, '2024-01', 'p-group', 'p-final', 'alt-group', 'alt-final')"
        )
        con.execute(_LOWER_DDL)
        con.execute("INSERT INTO Lower_Case VALUES (5.0, '2024-01', '99213', 'E&M'), (7.0, '2024-02', '71046', 'Radiology')")
    finally:
        con.close()


class ScriptedEndpoint(SqlEndpoint):
    """Wraps a real endpoint; records queries and injects delays or failures by predicate."""

    def __init__(self, inner: SqlEndpoint):
        self.inner = inner
        self.dialect = inner.dialect
        self.calls = []
        self.fail_when = None
        self.delay_when = None
        self.delay = 0.0

    def quote_identifier(self, name):
        return self.inner.quote_identifier(name)

    def count(self, fragment: str) -> int:
        return sum(1 for _, q in self.calls if fragment in q)

    async def execute(self, instance, query, params=()):
        self.calls.append((instance.table, query))
        if self.delay_when and self.delay_when(instance, query):
            await asyncio.sleep(self.delay)
        if self.fail_when and self.fail_when(instance, query):
            raise QueryError(f"injected failure on {instance.table}")
        return await self.inner.execute(instance, query, params)


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture
def data_dir(tmp_path):
    local = tmp_path / "local"
    local.mkdir()
    build_billing_db(str(local / f"{DATABASE}.duckdb"))
    return str(local)


@pytest.fixture
def claims():
    return Instance("localhost", DATABASE, "Claims")


@pytest.fixture
def payer_only():
    return Instance("localhost", DATABASE, "Payer_Only")


@pytest.fixture
def ambiguous():
    return Instance("localhost", DATABASE, "Ambiguous")


@pytest.fixture
def lower_case():
    return Instance("localhost", DATABASE, "Lower_Case")


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def endpoint(data_dir):
    return ScriptedEndpoint(DuckDBEndpoint(data_dir))


@pytest.fixture
def executor(endpoint):
    return QueryExecutor(endpoint)


@pytest.fixture
def cache_path(tmp_path):
    return str(tmp_path / "cache" / "cascade_cache.duckdb")


@pytest.fixture
def query_cache(cache_path):
    store = CacheStore(cache_path, "query_cache")
    yield store
    asyncio.run(store.close())


@pytest.fixture
def mapping_cache(cache_path):
    store = CacheStore(cache_path, "mapping_state")
    yield store
    asyncio.run(store.close())


@pytest.fixture
def toasts():
    """ToastEvents that records (status, message) pairs in .messages."""
    events = ToastEvents()
    events.messages = []
    events.add_listener(lambda message, status: events.messages.append((status, message)))
    return events


@pytest.fixture
def discovery(executor, query_cache):
    return MappingDiscovery(executor, query_cache)


@pytest.fixture
def mappings_engine(discovery, mapping_cache, toasts):
    return MappingsStateEngine(discovery, mapping_cache, None, toasts)


@pytest.fixture
def instance_engine(executor, discovery, mappings_engine, toasts):
    return InstanceStateEngine(executor, discovery, mappings_engine, toasts)


@pytest.fixture
def loaded(instance_engine, mappings_engine, claims):
    """Claims instance loaded and its mapping tabs fetched."""
    view = asyncio.run(instance_engine.set_instance(claims))
    asyncio.run(mappings_engine.set_mappings_state(view))
    return view
