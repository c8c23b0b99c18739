from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 100
DEFAULT_BATCH_SIZE = 500


class FetchError(Exception):
    """A page request failed: non-2xx status (status set) or transport failure (status None)."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.url = url


@dataclass
class Page:
    """One window of a resource, normalized across the GET (skip) and POST (offset) forms."""

    data: List[Dict[str, Any]]
    total_count: int
    returned_count: int
    offset: int
    has_next: bool
    next_offset: Optional[int] = None
    has_prev: bool = False
    limit: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Page":
        data = payload.get("data") or []
        offset = payload.get("offset", payload.get("skip", 0)) or 0
        returned = payload.get("returned_count", len(data))
        return cls(
            data=data,
            total_count=int(payload.get("total_count") or 0),
            returned_count=int(returned),
            offset=int(offset),
            has_next=bool(payload.get("has_next")),
            next_offset=payload.get("next_offset"),
            has_prev=bool(payload.get("has_prev", offset > 0)),
            limit=payload.get("limit"),
            raw=payload,
        )


class ResourcePager:
    """Async client for the /resources gateway: single pages, full drains and lazy streams.

    Drains never retry; the first failed page aborts the drain and the FetchError
    reaches the caller.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, headers: Optional[Dict[str, str]] = None):
        self._session = session
        self._owns_session = session is None
        self.headers = headers or {}

    async def __aenter__(self) -> "ResourcePager":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                connect=int(os.getenv("HTTP_CONNECT_TIMEOUT", "10")),
                total=int(os.getenv("HTTP_READ_TIMEOUT", "120")),
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Cleanup resources"""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, url: str, **kwargs) -> Optional[Dict[str, Any]]:
        session = self._get_session()
        try:
            async with session.request(method, url, headers=self.headers, **kwargs) as response:
                if response.status >= 300:
                    message = await _error_message(response)
                    raise FetchError(message, status=response.status, url=url)
                if response.status == 204:
                    return None
                try:
                    return await response.json()
                except ValueError as e:
                    raise FetchError(f"Invalid JSON in response from {url}", status=response.status, url=url) from e
        except asyncio.TimeoutError as e:
            raise FetchError(f"Request timed out: {method} {url}", url=url) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Request failed: {e}", url=url) from e

    async def fetch_page(self, resource_url: str, *, offset: int = 0, limit: Optional[int] = DEFAULT_PAGE_LIMIT,
                         sort: Optional[Dict[str, Any]] = None, skip: Optional[int] = None) -> Page:
        """One gateway call.

        With `skip` the GET form is used (`limit=None` there means every remaining row);
        otherwise the POST form with `offset`, `limit` and an optional `sort`.
        """
        if skip is not None:
            params = {"skip": str(skip)}
            if limit is not None:
                params["limit"] = str(limit)
            logger.debug("Fetching %s (GET skip=%s limit=%s)", resource_url, skip, limit)
            payload = await self._request("GET", resource_url, params=params)
        else:
            body: Dict[str, Any] = {"offset": offset, "limit": DEFAULT_PAGE_LIMIT if limit is None else limit}
            if sort:
                body["sort"] = sort
            logger.debug("Fetching %s (POST %s)", resource_url, body)
            payload = await self._request("POST", resource_url, json=body)
        page = Page.from_payload(payload or {})
        logger.debug("Fetched %d rows at offset %d (has_next=%s)", page.returned_count, page.offset, page.has_next)
        return page

    async def _pages(self, resource_url: str, batch_size: int,
                     sort: Optional[Dict[str, Any]]) -> AsyncIterator[Page]:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        offset = 0
        while True:
            page = await self.fetch_page(resource_url, offset=offset, limit=batch_size, sort=sort)
            yield page
            if not page.has_next:
                return
            if not page.data:
                raise FetchError(
                    f"Server reported more rows after offset {offset} but returned an empty page",
                    url=resource_url,
                )
            offset += len(page.data)

    async def fetch_stream(self, resource_url: str, *, batch_size: int = DEFAULT_BATCH_SIZE,
                           sort: Optional[Dict[str, Any]] = None) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield row batches until the server reports no further pages.

        Each call starts a fresh cursor at offset 0. The cursor advances by the
        rows actually returned, so short batches are handled.
        """
        async for page in self._pages(resource_url, batch_size, sort):
            if page.data:
                yield page.data

    async def fetch_all(self, resource_url: str, *, batch_size: int = DEFAULT_BATCH_SIZE,
                        on_progress: Optional[Callable[[int, int], Any]] = None,
                        sort: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Drain every row of a resource, calling `on_progress(fetched, total)` after each batch."""
        rows: List[Dict[str, Any]] = []
        logger.debug("Fetching all data from %s (batch_size=%s)", resource_url, batch_size)
        async for page in self._pages(resource_url, batch_size, sort):
            rows.extend(page.data)
            if on_progress is not None:
                on_progress(len(rows), page.total_count)
            logger.debug("Progress: %d/%d rows", len(rows), page.total_count)
        logger.debug("Fetch complete: %d total rows", len(rows))
        return rows

    async def get_metadata(self, resource_url: str) -> Dict[str, Any]:
        """Plain GET of the resource; without skip/limit the server returns every row."""
        return await self._request("GET", resource_url) or {}

    async def delete(self, resource_url: str) -> None:
        await self._request("DELETE", resource_url)


async def _error_message(response) -> str:
    try:
        body = await response.json(content_type=None)
    except Exception:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"Fetch failed with status {response.status}"
