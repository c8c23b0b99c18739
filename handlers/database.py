from __future__ import annotations

from typing import Any, Dict

from core.server import ValidationError


QUERY_DESCRIPTION = (
    "Execute a read-only SQL query against the insights database. Returns a SAMPLE of results "
    "(up to {sample_size} rows) along with the total count and a resource link for retrieving "
    "the full dataset over HTTP. Use the tables and schema tools first to understand table structures. "
    "Do NOT include a LIMIT clause; sampling is handled automatically."
)

QUERY_STANDARD_DESCRIPTION = (
    "Execute a read-only SQL query against the insights database and return every row. "
    "The connection is read-only, so only SELECT statements will work. Use LIMIT to control result size."
)


def _require_sql(arguments: Dict[str, Any]) -> str:
    sql = arguments.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        raise ValidationError("'sql' is required and must be a non-empty string")
    return sql


def handle_query(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    """Dual response: sample rows for the model, a resource link for the full result."""
    return server.executor.execute(_require_sql(arguments))


def handle_query_standard(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    rows = server.engine.execute(_require_sql(arguments))
    return {"rows": rows, "rowCount": len(rows)}


def handle_tables(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    return {"tables": server.engine.list_tables()}


def handle_schema(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    table = arguments.get("table")
    if not isinstance(table, str) or not table.strip():
        raise ValidationError("'table' is required")
    return {"table": table, "columns": server.engine.describe_table(table.strip())}


_SQL_SCHEMA = {
    "type": "object",
    "properties": {
        "sql": {"type": "string", "description": "The SQL SELECT query to execute (SQLite dialect)"}
    },
    "required": ["sql"],
}


def register(server) -> None:
    """Register the database tools; `query` is the dual-response variant unless disabled."""
    server.register("tables", handle_tables, description="List the tables and views in the insights database.")
    server.register(
        "schema",
        handle_schema,
        description="Returns the column definitions for a database table.",
        input_schema={
            "type": "object",
            "properties": {"table": {"type": "string", "description": "Table name"}},
            "required": ["table"],
        },
    )
    if server.dual_response:
        server.register(
            "query",
            handle_query,
            description=QUERY_DESCRIPTION.format(sample_size=server.executor.sample_size),
            input_schema=_SQL_SCHEMA,
        )
    else:
        server.register("query", handle_query_standard, description=QUERY_STANDARD_DESCRIPTION,
                        input_schema=_SQL_SCHEMA)
