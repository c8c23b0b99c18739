import sqlite3
import time
import logging
from pathlib import Path
from typing import Any, Dict, List
from contextlib import contextmanager

from observability.metrics import record_query
from utils import compact_sql

logger = logging.getLogger(__name__)


class QueryExecutionError(Exception):
    """Raised when the engine rejects or fails a query.

    The message is the engine's own error text, passed through untouched.
    """
    pass


class QueryEngine:
    """Read-only SQLite access for the dual-response tools and the REST gateway"""

    def __init__(self, db_path: str = "insights.sqlite"):
        self.db_path = Path(db_path)

    @contextmanager
    def _get_connection(self):
        """Open a fresh read-only connection; one per call so threads never share it"""
        conn = None
        try:
            uri = self.db_path.resolve().as_uri() + "?mode=ro"
            conn = sqlite3.connect(uri, uri=True)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            logger.debug(f"Database error: {e}")
            raise QueryExecutionError(str(e)) from e
        finally:
            if conn:
                conn.close()

    def execute(self, sql: str) -> List[Dict[str, Any]]:
        """Run a statement and return its rows as ordered field -> value dicts"""
        logger.debug("Executing SQL: %s", compact_sql(sql))
        start = time.time()
        ok = False
        try:
            with self._get_connection() as conn:
                rows = [dict(row) for row in conn.execute(sql).fetchall()]
            ok = True
            return rows
        finally:
            record_query(ok, time.time() - start)

    def scalar(self, sql: str) -> Any:
        """Return the first column of the first row, or None for an empty result"""
        rows = self.execute(sql)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    def list_tables(self) -> List[str]:
        rows = self.execute(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'view') "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    def describe_table(self, table: str) -> List[Dict[str, Any]]:
        """Column listing for a table as reported by PRAGMA table_info"""
        if table not in self.list_tables():
            raise QueryExecutionError(f"no such table: {table}")
        escaped = table.replace('"', '""')
        rows = self.execute(f'PRAGMA table_info("{escaped}")')
        return [
            {
                "name": r["name"],
                "type": r["type"] or "",
                "nullable": not r["notnull"],
                "primary_key": bool(r["pk"]),
            }
            for r in rows
        ]

    def exists(self) -> bool:
        return self.db_path.exists()
