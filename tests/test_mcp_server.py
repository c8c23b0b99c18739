import json

import pytest
from fastapi.testclient import TestClient

import server as mcp
from remote_server import create_app
from client import ResourcePager, is_dual_response, parse

from conftest import BASE_URL, SAMPLE_SIZE, TOTAL_ROWS


def _call(name, arguments, msg_id=1):
    return {"jsonrpc": "2.0", "id": msg_id, "method": "tools/call", "params": {"name": name, "arguments": arguments}}


def test_initialize_and_list(dual):
    init = mcp.handle_message({"jsonrpc": "2.0", "id": 1, "method": "initialize"}, dual)
    assert init["result"]["serverInfo"]["name"] == mcp.SERVER_NAME
    assert mcp.handle_message({"method": "notifications/initialized"}, dual) is None

    tools = mcp.handle_message({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, dual)["result"]["tools"]
    names = {t["name"] for t in tools}
    assert names == {"query", "tables", "schema"}
    query = next(t for t in tools if t["name"] == "query")
    assert query["inputSchema"]["required"] == ["sql"]
    assert str(SAMPLE_SIZE) in query["description"]


def test_unknown_method_and_tool(dual):
    assert mcp.handle_message({"id": 3, "method": "bogus"}, dual)["error"]["code"] == -32601
    assert mcp.handle_message(_call("nope", {}), dual)["error"]["code"] == -32601
    assert mcp.handle_message(["not", "an", "object"], dual)["error"]["code"] == -32600


def test_query_tool_returns_dual_response(dual):
    out = mcp.handle_message(_call("query", {"sql": "SELECT * FROM items ORDER BY id"}), dual)
    result = out["result"]
    assert "isError" not in result
    assert result["content"][0]["type"] == "text"
    # both the structured slot and the text item carry the same payload
    assert json.loads(result["content"][0]["text"]) == result["structuredContent"]

    parsed = parse(result)
    assert parsed.total_count == TOTAL_ROWS
    assert parsed.sample_count == SAMPLE_SIZE
    assert parsed.resource_url.startswith(f"{BASE_URL}/resources/")
    assert is_dual_response({"content": result["content"]})


def test_query_tool_failure_is_error_result(dual):
    out = mcp.handle_message(_call("query", {"sql": "SELECT * FROM nowhere"}), dual)
    result = out["result"]
    assert result["isError"] is True
    assert "no such table: nowhere" in result["content"][0]["text"]
    assert len(dual.resources) == 0
    assert not is_dual_response(result)


def test_query_tool_requires_sql(dual):
    out = mcp.handle_message(_call("query", {}), dual)
    assert out["error"]["code"] == -32602


def test_tables_and_schema_tools(dual):
    tables = mcp.handle_message(_call("tables", {}), dual)["result"]["structuredContent"]["tables"]
    assert tables == ["empty_table", "items"]

    schema = mcp.handle_message(_call("schema", {"table": "items"}), dual)["result"]["structuredContent"]
    assert [c["name"] for c in schema["columns"]] == ["id", "name", "score", "active"]
    assert schema["columns"][0]["primary_key"] is True

    missing = mcp.handle_message(_call("schema", {"table": "nope"}), dual)["result"]
    assert missing["isError"] is True


def test_standard_mode_returns_rows(insights_db):
    srv = mcp.build_server({"db_path": str(insights_db), "dual_response": False})
    result = mcp.handle_message(_call("query", {"sql": "SELECT id FROM items LIMIT 4"}), srv)["result"]
    assert result["structuredContent"] == {"rows": [{"id": i} for i in range(1, 5)], "rowCount": 4}
    assert not is_dual_response(result)
    assert len(srv.resources) == 0


@pytest.mark.asyncio
async def test_end_to_end_over_http(http, gateway_session):
    r = http.post("/mcp", json=_call("query", {"sql": "SELECT id, score FROM items ORDER BY id"}))
    assert r.status_code == 200
    parsed = parse(r.json()["result"])
    assert parsed is not None

    pager = ResourcePager(session=gateway_session)
    rows = await pager.fetch_all(parsed.resource_url, batch_size=7)
    assert len(rows) == parsed.total_count == TOTAL_ROWS
    assert rows[:SAMPLE_SIZE] == parsed.sample


def test_mcp_notification_over_http(http):
    r = http.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert r.status_code == 202


def test_standard_mode_has_no_resource_routes(insights_db):
    srv = mcp.build_server({"db_path": str(insights_db), "dual_response": False, "debug": True})
    client = TestClient(create_app(srv))
    r = client.get("/resources/anything")
    assert r.status_code == 404
    assert "error" not in r.json()
    assert client.post("/resources/anything", json={}).status_code == 404
    assert client.get("/resources/").status_code == 404
    assert client.get("/health").json()["mode"] == "standard"
