"""
CASCADE - SQL execution endpoints.
An endpoint runs one parameterized query (`?` placeholders) against an instance and
returns plain rows (list of dicts with JSON-friendly values). Blocking drivers run in
a worker thread so the engines can fan out with asyncio.gather.

DuckDBEndpoint serves local instances (one .duckdb file per database);
SqlServerEndpoint serves remote SQL Server instances through pyodbc.
"""

import asyncio
import datetime
import decimal
import logging
import os
import re
from typing import Any, Dict, List, Sequence

import duckdb

from state.models import Instance
from utils.errors import QueryError, TransientQueryFailure

logger = logging.getLogger(__name__)


def normalize_query(sql: str) -> str:
    """Collapse whitespace so multi-line query text logs on one line."""
    return re.sub(r"\s+", " ", sql).strip()


def plain_value(value: Any) -> Any:
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return value


def to_plain_rows(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [{col: plain_value(v) for col, v in zip(columns, row)} for row in rows]


class SqlEndpoint:
    """Base endpoint. Subclasses implement _run (blocking) and quote_identifier."""

    dialect = "generic"

    def quote_identifier(self, name: str) -> str:
        raise NotImplementedError

    def _run(self, instance: Instance, query: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def execute(self, instance: Instance, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        logger.debug("[%s] %s | params: %s", instance.label(), normalize_query(query)[:200], list(params))
        rows = await asyncio.to_thread(self._run, instance, query, list(params))
        logger.debug("[%s] query returned %d rows", instance.label(), len(rows))
        return rows


class DuckDBEndpoint(SqlEndpoint):
    """Local endpoint: database `X` lives in `<data_dir>/X.duckdb`. New read-only connection per call."""

    dialect = "duckdb"

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def database_path(self, database: str) -> str:
        return os.path.join(self.data_dir, f"{database}.duckdb")

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def _run(self, instance, query, params):
        path = self.database_path(instance.database)
        if not os.path.exists(path):
            raise TransientQueryFailure(f"Local database not found: {path}")
        try:
            con = duckdb.connect(path, read_only=True)
        except (duckdb.IOException, duckdb.ConnectionException) as e:
            raise TransientQueryFailure(f"Cannot open {path}: {e}") from e
        try:
            cursor = con.execute(query, params)
            columns = [d[0] for d in cursor.description or ()]
            return to_plain_rows(columns, cursor.fetchall())
        except (duckdb.IOException, duckdb.ConnectionException, duckdb.InterruptException) as e:
            logger.error("Query failed on %s: %s | SQL: %s", instance.label(), e, query[:300])
            raise TransientQueryFailure(str(e)) from e
        except duckdb.Error as e:
            logger.error("Query failed on %s: %s | SQL: %s", instance.label(), e, query[:300])
            raise QueryError(str(e)) from e
        finally:
            con.close()


class SqlServerEndpoint(SqlEndpoint):
    """Remote SQL Server endpoint (pyodbc). Encrypted, server certificate trusted, port 1433 by default."""

    dialect = "mssql"

    def __init__(
        self,
        driver: str = "ODBC Driver 18 for SQL Server",
        port: int = 1433,
        encrypt: bool = True,
        trust_server_certificate: bool = True,
        timeout: int = 30,
    ):
        self.driver = driver
        self.port = port
        self.encrypt = encrypt
        self.trust_server_certificate = trust_server_certificate
        self.timeout = timeout

    def quote_identifier(self, name: str) -> str:
        return "[" + name.replace("]", "]]") + "]"

    def connection_string(self, instance: Instance) -> str:
        creds = instance.credentials
        parts = [
            f"DRIVER={{{self.driver}}}",
            f"SERVER={instance.server},{self.port}",
            f"DATABASE={instance.database}",
        ]
        if creds and creds.user:
            parts.append(f"UID={creds.user}")
            parts.append(f"PWD={creds.password}")
        else:
            parts.append("Trusted_Connection=yes")
        parts.append(f"Encrypt={'yes' if self.encrypt else 'no'}")
        parts.append(f"TrustServerCertificate={'yes' if self.trust_server_certificate else 'no'}")
        return ";".join(parts) + ";"

    def _run(self, instance, query, params):
        import pyodbc

        try:
            con = pyodbc.connect(self.connection_string(instance), timeout=self.timeout)
        except pyodbc.Error as e:
            logger.error("Cannot connect to %s/%s: %s", instance.server, instance.database, e)
            raise TransientQueryFailure(f"Cannot connect to {instance.server}: {e}") from e
        try:
            con.timeout = self.timeout
            cursor = con.cursor()
            cursor.execute(query, params)
            columns = [d[0] for d in cursor.description or ()]
            return to_plain_rows(columns, cursor.fetchall())
        except (pyodbc.OperationalError, pyodbc.InterfaceError) as e:
            logger.error("Query failed on %s: %s | SQL: %s", instance.label(), e, query[:300])
            raise TransientQueryFailure(str(e)) from e
        except pyodbc.Error as e:
            logger.error("Query failed on %s: %s | SQL: %s", instance.label(), e, query[:300])
            raise QueryError(str(e)) from e
        finally:
            con.close()
