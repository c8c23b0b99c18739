from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from observability.metrics import record_page_request
from storage import QueryEngine, QueryExecutionError
from utils import quote_identifier

from .registry import Resource, ResourceRegistry

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 100


class ResourceNotFound(Exception):
    """Unknown, deleted or expired resource id."""

    def __init__(self, resource_id: str, message: str = "Resource not found or expired") -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.message = message


class ResourceGateway:
    """Answers page requests by re-running the stored query under a new bound.

    Nothing but the query text and its creation-time count is kept per resource;
    every page is computed from scratch against the engine.
    """

    def __init__(self, registry: ResourceRegistry, engine: QueryEngine) -> None:
        self.registry = registry
        self.engine = engine

    # --- Query builders ---
    @staticmethod
    def window_sql(sql: str, skip: int, limit: Optional[int]) -> str:
        if limit is not None:
            return f"SELECT * FROM ({sql}) LIMIT {int(limit)} OFFSET {int(skip)}"
        if skip > 0:
            return f"SELECT * FROM ({sql}) LIMIT -1 OFFSET {int(skip)}"
        return sql

    @staticmethod
    def page_sql(sql: str, offset: int, limit: int, sort: Optional[Dict[str, Any]] = None) -> str:
        paged = sql
        if sort and sort.get("field"):
            order = "DESC" if str(sort.get("order") or "asc").lower() == "desc" else "ASC"
            # Order the whole logical result, then cut the page out of it
            paged = f"SELECT * FROM ({sql}) ORDER BY {quote_identifier(sort['field'])} {order}"
        return f"{paged} LIMIT {int(limit)} OFFSET {int(offset)}"

    # --- Operations ---
    def read_window(self, resource_id: str, skip: int = 0, limit: Optional[int] = None) -> Dict[str, Any]:
        """GET form: skip/limit, limit absent means every remaining row."""
        _check_bounds(skip=skip, limit=limit)
        resource = self._resolve(resource_id, "GET")
        rows = self._run(resource, self.window_sql(resource.sql, skip, limit), "GET")
        returned = len(rows)
        has_next = limit is not None and (skip + returned) < resource.total_count
        record_page_request("GET", "success", returned)
        return {
            "data": rows,
            "total_count": resource.total_count,
            "returned_count": returned,
            "skip": skip,
            "limit": limit,
            "has_next": has_next,
            "has_prev": skip > 0,
        }

    def read_page(self, resource_id: str, offset: int = 0, limit: int = DEFAULT_PAGE_LIMIT,
                  sort: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST form: offset/limit with an optional global sort."""
        _check_bounds(skip=offset, limit=limit)
        resource = self._resolve(resource_id, "POST")
        rows = self._run(resource, self.page_sql(resource.sql, offset, limit, sort), "POST")
        returned = len(rows)
        has_next = (offset + returned) < resource.total_count
        record_page_request("POST", "success", returned)
        return {
            "data": rows,
            "total_count": resource.total_count,
            "returned_count": returned,
            "offset": offset,
            "has_next": has_next,
            "next_offset": offset + returned if has_next else None,
        }

    def delete(self, resource_id: str) -> None:
        if not self.registry.delete(resource_id):
            record_page_request("DELETE", "not_found")
            raise ResourceNotFound(resource_id, "Resource not found")
        record_page_request("DELETE", "success")

    # --- Internals ---
    def _resolve(self, resource_id: str, method: str) -> Resource:
        resource = self.registry.get(resource_id)
        if resource is None:
            logger.debug("[%s] Resource not found: %s", method, resource_id)
            record_page_request(method, "not_found")
            raise ResourceNotFound(resource_id)
        return resource

    def _run(self, resource: Resource, sql: str, method: str):
        try:
            rows = self.engine.execute(sql)
        except QueryExecutionError as e:
            logger.warning("[%s] Query failed for resource %s: %s", method, resource.id, e)
            record_page_request(method, "query_failed")
            raise
        logger.debug("[%s] Resource %s returned %d rows", method, resource.id, len(rows))
        return rows


def _check_bounds(*, skip: int, limit: Optional[int]) -> None:
    if skip < 0:
        raise ValueError("skip/offset must be >= 0")
    if limit is not None and limit < 0:
        raise ValueError("limit must be >= 0")
