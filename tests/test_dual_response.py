import json

import pytest

from client.dual_response import DualResponse, is_dual_response, parse

PAYLOAD = {
    "results": [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}],
    "resource": {
        "uri": "resource://abc",
        "url": "http://localhost:3000/resources/abc",
        "name": "Query Results",
        "mimeType": "application/json",
    },
    "metadata": {
        "total_count": 23,
        "sample_count": 2,
        "columns": [{"name": "id", "type": "number"}, {"name": "name", "type": "string"}],
        "executed_at": "2026-01-01T00:00:00Z",
        "expires_at": None,
    },
}


def _text_item(text):
    return {"content": [{"type": "text", "text": text}]}


@pytest.mark.parametrize("value", [
    {"structuredContent": PAYLOAD, "content": [{"type": "text", "text": "ignored"}]},
    PAYLOAD,
    json.dumps(PAYLOAD),
    json.dumps(json.dumps(PAYLOAD)),
    _text_item(json.dumps(PAYLOAD)),
    _text_item(json.dumps(json.dumps(PAYLOAD))),
    {"content": {"type": "text", "text": json.dumps(PAYLOAD)}},
    _text_item(json.dumps({"structuredContent": PAYLOAD})),
    {"type": "text", "text": json.dumps(PAYLOAD)},
    [{"type": "text", "text": "summary"}, {"type": "text", "text": json.dumps(PAYLOAD)}],
], ids=["structured", "top-level", "json-string", "double-json-string", "text-item",
        "text-item-double", "single-content-item", "text-embeds-envelope", "bare-text-item",
        "bare-content-list"])
def test_detects_every_shape(value):
    assert is_dual_response(value) is True
    parsed = parse(value)
    assert isinstance(parsed, DualResponse)
    assert parsed.resource_url == "http://localhost:3000/resources/abc"
    assert parsed.resource_uri == "resource://abc"
    assert parsed.total_count == 23
    assert parsed.sample_count == 2
    assert parsed.sample == PAYLOAD["results"]
    assert [c["name"] for c in parsed.columns] == ["id", "name"]
    assert parsed.executed_at == "2026-01-01T00:00:00Z"
    assert parsed.expires_at is None


@pytest.mark.parametrize("value", [
    None,
    42,
    "",
    "not json",
    "{broken",
    [],
    {},
    {"results": [1, 2, 3]},
    {"resource": {}},
    {"resource": {"url": ""}},
    {"resource": "http://x"},
    {"structuredContent": {"rows": []}},
    {"content": [{"type": "text", "text": "{oops"}]},
    {"content": [{"type": "image", "data": json.dumps(PAYLOAD)}]},
    {"content": "plain"},
    {"type": "text", "text": "plain"},
    [{"type": "image", "data": json.dumps(PAYLOAD)}],
    json.dumps({"rows": [], "rowCount": 0}),
])
def test_rejects_without_raising(value):
    assert is_dual_response(value) is False
    assert parse(value) is None


def test_structured_content_wins_over_text():
    other = dict(PAYLOAD, resource=dict(PAYLOAD["resource"], url="http://elsewhere/resources/zzz"))
    value = {"structuredContent": PAYLOAD, "content": [{"type": "text", "text": json.dumps(other)}]}
    assert parse(value).resource_url == PAYLOAD["resource"]["url"]


def test_later_text_item_is_found():
    value = {"content": [
        {"type": "text", "text": "Here are your results"},
        {"type": "text", "text": json.dumps(PAYLOAD)},
    ]}
    assert parse(value).total_count == 23


def test_missing_metadata_falls_back():
    value = {"resource": {"url": "http://x/resources/1"}, "results": [{"a": 1}, {"a": 2}, {"a": 3}]}
    parsed = parse(value)
    assert parsed.total_count == 0
    assert parsed.sample_count == 3
    assert parsed.columns == []
    assert parsed.resource_uri is None


def test_garbage_metadata_does_not_raise():
    value = {"resource": {"url": "http://x/resources/1"}, "results": "nope",
             "metadata": {"total_count": "many", "sample_count": True, "columns": "id"}}
    parsed = parse(value)
    assert parsed.sample == []
    assert parsed.total_count == 0
    assert parsed.sample_count == 0
    assert parsed.columns == []


def test_deep_nesting_is_bounded():
    text = json.dumps(PAYLOAD)
    for _ in range(20):
        text = json.dumps(text)
    assert parse(text) is None
