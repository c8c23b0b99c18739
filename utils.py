from typing import Optional


def strip_query(sql: str) -> str:
    """
    Normalize caller-supplied query text so it can be wrapped or extended.

    Steps:
    - Trim surrounding whitespace.
    - Drop trailing statement terminators (`;`), including runs like `;;` or `; ;`.

    The query is otherwise treated as opaque text; no parsing or validation happens here.

    Args:
        sql: Raw query text.

    Returns:
        The query without trailing terminators.
    """
    if not isinstance(sql, str):
        raise TypeError("strip_query expects a string input")

    s = sql.strip()
    while s.endswith(";"):
        s = s[:-1].rstrip()
    return s


def compact_sql(sql: str, max_chars: Optional[int] = 150) -> str:
    """Collapse whitespace runs to single spaces and cap the length for log lines."""
    if not isinstance(sql, str):
        sql = str(sql)
    out = " ".join(sql.split())
    if isinstance(max_chars, int) and max_chars >= 0 and len(out) > max_chars:
        out = out[:max_chars] + "..."
    return out


def quote_identifier(name: str) -> str:
    """Quote a column name for use in ORDER BY.

    SQLite always resolves a backticked name as an identifier (never as a
    string literal), so an unknown column fails at the engine.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("identifier must be a non-empty string")
    return "`" + name.replace("`", "``") + "`"
