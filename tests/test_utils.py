import pytest

from utils import compact_sql, quote_identifier, strip_query


def test_strip_trailing_terminators():
    assert strip_query("SELECT 1;") == "SELECT 1"
    assert strip_query("  SELECT 1 ; ;\n") == "SELECT 1"


def test_strip_keeps_inner_text():
    s = "SELECT ';' AS x FROM t WHERE a = 1"
    assert strip_query(s) == s


def test_strip_idempotent():
    once = strip_query("SELECT 1;;  ")
    assert strip_query(once) == once


def test_compact_collapses_whitespace():
    assert compact_sql("SELECT\n  a,\n\tb\nFROM   t") == "SELECT a, b FROM t"


def test_compact_truncation():
    out = compact_sql("x" * 50, max_chars=10)
    assert out == "x" * 10 + "..."
    assert compact_sql("short", max_chars=None) == "short"


def test_quote_identifier():
    assert quote_identifier("score") == "`score`"
    assert quote_identifier("we`ird") == "`we``ird`"
    with pytest.raises(ValueError):
        quote_identifier("")


def test_type_error():
    with pytest.raises(TypeError):
        strip_query(123)  # type: ignore[arg-type]
