import sys
import pathlib
import sqlite3

import pytest

# Ensure project root is importable in tests
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TOTAL_ROWS = 23
SAMPLE_SIZE = 10
BASE_URL = "http://testserver"


def _build_db(path: pathlib.Path) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL, score REAL, active BOOLEAN)")
        # 7 and 23 are coprime, so every score is distinct
        conn.executemany(
            "INSERT INTO items (id, name, score, active) VALUES (?, ?, ?, ?)",
            [(i, f"ITEM {i:02d}", ((i * 7) % TOTAL_ROWS) + 0.5, i % 2) for i in range(1, TOTAL_ROWS + 1)],
        )
        conn.execute("CREATE TABLE empty_table (id INTEGER)")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def insights_db(tmp_path):
    path = tmp_path / "insights.sqlite"
    _build_db(path)
    return path


@pytest.fixture
def dual(insights_db):
    import server as mcp_server
    return mcp_server.build_server({
        "db_path": str(insights_db),
        "base_url": BASE_URL,
        "sample_size": SAMPLE_SIZE,
        "dual_response": True,
        "debug": True,
    })


@pytest.fixture
def http(dual):
    from fastapi.testclient import TestClient
    from remote_server import create_app
    return TestClient(create_app(dual))


@pytest.fixture
def resource(dual):
    """A registered resource over all 23 rows, ordered by id."""
    payload = dual.executor.execute("SELECT id, name, score, active FROM items ORDER BY id")
    return payload


class _GatewayResponse:
    def __init__(self, response):
        self._response = response
        self.status = response.status_code

    async def json(self, content_type="application/json"):
        return self._response.json()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class GatewaySession:
    """Stands in for aiohttp.ClientSession, routing requests into the FastAPI test client."""

    def __init__(self, client, max_rows=None):
        self.client = client
        self.max_rows = max_rows
        self.calls = []

    def request(self, method, url, headers=None, params=None, json=None):
        if self.max_rows is not None and isinstance(json, dict) and "limit" in json:
            # Emulate a server that caps every batch below what was asked for
            json = dict(json, limit=min(json["limit"], self.max_rows))
        self.calls.append({"method": method, "url": url, "params": params, "json": json})
        return _GatewayResponse(self.client.request(method, url, params=params, json=json, headers=headers))

    async def close(self):
        return None


@pytest.fixture
def gateway_session(http):
    return GatewaySession(http)
