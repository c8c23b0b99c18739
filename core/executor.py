from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from storage import QueryEngine, QueryExecutionError
from utils import compact_sql, strip_query

from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10


def infer_columns(rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Coarse column metadata from the first row: number, boolean or string."""
    if not rows:
        return []
    columns = []
    for name, value in rows[0].items():
        # bool is an int subclass; check it first
        if isinstance(value, bool):
            kind = "boolean"
        elif isinstance(value, (int, float)):
            kind = "number"
        else:
            kind = "string"
        columns.append({"name": name, "type": kind})
    return columns


class SamplingExecutor:
    """Runs a caller-supplied read-only query as count + bounded sample and registers it.

    The query text is opaque here. Protection against writes comes from the
    engine's read-only connection, not from any inspection of the SQL.
    """

    def __init__(self, engine: QueryEngine, registry: ResourceRegistry, base_url: str,
                 sample_size: int = DEFAULT_SAMPLE_SIZE) -> None:
        if sample_size < 1:
            raise ValueError("sample_size must be >= 1")
        self.engine = engine
        self.registry = registry
        self.base_url = base_url.rstrip("/")
        self.sample_size = sample_size

    def resource_url(self, resource_id: str) -> str:
        return f"{self.base_url}/resources/{resource_id}"

    def count(self, sql: str) -> int:
        value = self.engine.scalar(f"SELECT COUNT(*) AS count FROM ({sql})")
        return int(value or 0)

    def sample(self, sql: str, size: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.engine.execute(f"{sql} LIMIT {int(size or self.sample_size)}")

    def execute(self, sql: str, *, columns: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        """Count, sample and register `sql`; returns the dual-response payload.

        Raises QueryExecutionError with the engine's message when either query
        fails, in which case nothing is registered.
        """
        query = strip_query(sql)
        if not query:
            raise QueryExecutionError("Query text is empty")
        logger.debug("Dual-response query: %s (sample_size=%s)", compact_sql(query), self.sample_size)

        total_count = self.count(query)
        rows = self.sample(query)
        cols = list(columns) if columns else infer_columns(rows)

        resource_id = self.registry.create(query, total_count, columns=cols)
        resource = self.registry.peek(resource_id)
        expires_at = resource.to_dict()["expires_at"] if resource is not None else None

        logger.info("Registered resource %s: total_count=%s sample_count=%s", resource_id, total_count, len(rows))
        return {
            "results": rows,
            "resource": {
                "uri": f"resource://{resource_id}",
                "url": self.resource_url(resource_id),
                "name": "Query Results",
                "mimeType": "application/json",
            },
            "metadata": {
                "total_count": total_count,
                "sample_count": len(rows),
                "columns": cols,
                "executed_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                "expires_at": expires_at,
            },
        }
