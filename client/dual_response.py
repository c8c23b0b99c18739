"""
Detection and normalization of dual-response payloads inside MCP tool results.

The envelope around a tool result is produced by whatever MCP stack sits upstream,
so the same payload can show up in several shapes:

- ``{"structuredContent": {"resource": {"url": ...}, ...}}``
- a bare payload ``{"resource": {"url": ...}, "results": [...], "metadata": {...}}``
- ``{"content": [{"type": "text", "text": "<json>"}]}`` where the text may itself be
  a JSON-encoded string of JSON
- a bare text item ``{"type": "text", "text": "<json>"}`` or a bare list of content items
- a bare JSON string

Each shape is an extraction strategy; they are tried in order and the first one that
yields a payload with a ``resource.url`` wins. Malformed input is never an error, it
simply is not a dual response.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# How many JSON-in-a-string layers are unwrapped before giving up
MAX_UNWRAP_DEPTH = 4


@dataclass(frozen=True)
class DualResponse:
    sample: List[Dict[str, Any]]
    total_count: int
    sample_count: int
    resource_uri: Optional[str]
    resource_url: str
    columns: List[Dict[str, Any]] = field(default_factory=list)
    executed_at: Optional[str] = None
    expires_at: Optional[str] = None


def _has_resource_url(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    resource = obj.get("resource")
    if not isinstance(resource, dict):
        return False
    url = resource.get("url")
    return isinstance(url, str) and bool(url)


def _loads(text: Any) -> Any:
    if not isinstance(text, (str, bytes, bytearray)):
        return None
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return None


# --- Extraction strategies: value -> payload dict | None ---

def _from_structured_content(value: Any, depth: int) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        structured = value.get("structuredContent")
        if _has_resource_url(structured):
            return structured
    return None


def _from_top_level(value: Any, depth: int) -> Optional[Dict[str, Any]]:
    return value if _has_resource_url(value) else None


def _from_text_content(value: Any, depth: int) -> Optional[Dict[str, Any]]:
    if not isinstance(value, dict) or "content" not in value:
        return None
    content = value.get("content")
    items = content if isinstance(content, list) else [content]
    return _scan_text_items(items, depth)


def _from_text_items(value: Any, depth: int) -> Optional[Dict[str, Any]]:
    if isinstance(value, list):
        return _scan_text_items(value, depth)
    if isinstance(value, dict) and value.get("type") == "text":
        return _scan_text_items([value], depth)
    return None


def _scan_text_items(items: List[Any], depth: int) -> Optional[Dict[str, Any]]:
    for item in items:
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        found = _extract(_loads(item.get("text")), depth + 1)
        if found is not None:
            return found
    return None


def _from_json_string(value: Any, depth: int) -> Optional[Dict[str, Any]]:
    if not isinstance(value, (str, bytes, bytearray)):
        return None
    return _extract(_loads(value), depth + 1)


STRATEGIES: List[Callable[[Any, int], Optional[Dict[str, Any]]]] = [
    _from_structured_content,
    _from_top_level,
    _from_text_content,
    _from_text_items,
    _from_json_string,
]


def _extract(value: Any, depth: int = 0) -> Optional[Dict[str, Any]]:
    if value is None or depth > MAX_UNWRAP_DEPTH:
        return None
    for strategy in STRATEGIES:
        try:
            payload = strategy(value, depth)
        except Exception:  # a strategy that trips over odd input is just a miss
            logger.debug("Strategy %s failed", strategy.__name__, exc_info=True)
            continue
        if payload is not None:
            logger.debug("Dual response detected via %s", strategy.__name__)
            return payload
    return None


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _normalize(payload: Dict[str, Any]) -> DualResponse:
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    results = payload.get("results")
    sample = results if isinstance(results, list) else []
    resource = payload["resource"]
    columns = metadata.get("columns")
    return DualResponse(
        sample=sample,
        total_count=_as_int(metadata.get("total_count"), 0),
        sample_count=_as_int(metadata.get("sample_count"), len(sample)),
        resource_uri=resource.get("uri") if isinstance(resource.get("uri"), str) else None,
        resource_url=resource["url"],
        columns=columns if isinstance(columns, list) else [],
        executed_at=metadata.get("executed_at"),
        expires_at=metadata.get("expires_at"),
    )


def is_dual_response(value: Any) -> bool:
    """True when any known envelope shape carries a resource.url."""
    return _extract(value) is not None


def parse(value: Any) -> Optional[DualResponse]:
    """Normalized dual response from the first matching shape, or None."""
    payload = _extract(value)
    if payload is None:
        return None
    try:
        parsed = _normalize(payload)
    except Exception:
        logger.debug("Dual response payload could not be normalized", exc_info=True)
        return None
    logger.debug("Parsed dual response: total_count=%s sample_count=%s url=%s",
                 parsed.total_count, parsed.sample_count, parsed.resource_url)
    return parsed
