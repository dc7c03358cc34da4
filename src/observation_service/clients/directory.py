"""Async client for the user/location directory service.

Every call is raced against a fixed timeout. When the timeout wins the call
is reported as failed and its eventual result is discarded; the underlying
HTTP request is not cancelled. Calls are never retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID

import httpx

from observation_service.config import settings

logger = logging.getLogger(__name__)

RESPONSE_CODE_OK = "OK"


def is_uuid(value: Any) -> bool:
    """Return True if value is a canonical (hyphenated) UUID string."""
    text = str(value)
    if len(text) != 36:
        return False
    try:
        UUID(text)
    except ValueError:
        return False
    return True


def split_ids_and_codes(values: Iterable[Any]) -> tuple[list[str], list[str]]:
    """Classify identifiers into UUID-shaped ids and opaque codes.

    Order is preserved and duplicates are dropped within each group.
    """
    ids: list[str] = []
    codes: list[str] = []
    for value in values:
        text = str(value)
        bucket = ids if is_uuid(text) else codes
        if text not in bucket:
            bucket.append(text)
    return ids, codes


@dataclass(frozen=True)
class LocationFilter:
    """Location search filter: either by directory id or by location code."""

    key: Literal["id", "code"]
    values: tuple[str, ...]

    @classmethod
    def by_id(cls, values: Iterable[Any]) -> LocationFilter:
        return cls("id", tuple(str(v) for v in values))

    @classmethod
    def by_code(cls, values: Iterable[Any]) -> LocationFilter:
        return cls("code", tuple(str(v) for v in values))

    def to_filters(self) -> dict[str, list[str]]:
        return {self.key: list(self.values)}


@dataclass
class DirectoryResult:
    """Outcome of a directory call. ``success=False`` always carries no data."""

    success: bool
    data: list[dict[str, Any]] = field(default_factory=list)
    count: int = 0

    @classmethod
    def failed(cls) -> DirectoryResult:
        return cls(success=False)


def format_location(record: dict[str, Any]) -> dict[str, Any]:
    """Reshape a directory location record into the platform entity shape."""
    return {
        "_id": record.get("id"),
        "entityType": record.get("type"),
        "parentId": record.get("parentId"),
        "metaInformation": {
            "externalId": record.get("code"),
            "name": record.get("name"),
        },
        "registryDetails": {
            "code": record.get("code"),
            "locationId": record.get("id"),
        },
    }


def _discard_result(task: asyncio.Task[Any]) -> None:
    """Consume the outcome of an abandoned call so it is not reported as unhandled."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug("[DIRECTORY] abandoned call failed: %r", task.exception())


class DirectoryClient:
    """Async client for the directory's location search and user read APIs.

    Usage:
        async with DirectoryClient() as directory:
            result = await directory.location_search(LocationFilter.by_id(ids))
    """

    def __init__(
        self,
        base_url: str | None = None,
        authorization: str | None = None,
        *,
        timeout_ms: int | None = None,
        data_limit: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or settings.directory_base_url,
            timeout=settings.directory_transport_timeout_s,
        )
        self._authorization = (
            authorization if authorization is not None else settings.directory_authorization
        )
        self._timeout_s = (timeout_ms or settings.directory_timeout_ms) / 1000
        self._data_limit = data_limit or settings.directory_response_data_limit

    async def __aenter__(self) -> DirectoryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def location_search(
        self,
        location_filter: LocationFilter,
        *,
        limit: int | None = None,
        offset: int | None = None,
        query: str | None = None,
        format_result: bool = False,
    ) -> DirectoryResult:
        """Resolve location ids or codes to directory records.

        Args:
            location_filter: Which identifiers to look up.
            limit: Result cap (defaults to the configured data limit).
            offset: Optional page offset.
            query: Optional free-text search key.
            format_result: Reshape records into the platform entity shape.

        Returns:
            DirectoryResult; ``success=False`` on timeout, transport error,
            or a non-OK response code.
        """
        if not location_filter.values:
            return DirectoryResult(success=True)

        request: dict[str, Any] = {
            "filters": location_filter.to_filters(),
            "limit": limit or self._data_limit,
        }
        if offset is not None:
            request["offset"] = offset
        if query:
            request["query"] = query

        result = await self._post(settings.directory_location_search_path, {"request": request})
        if result is None:
            return DirectoryResult.failed()

        records = list(result.get("response") or [])
        count = int(result.get("count", len(records)))
        if format_result:
            records = [format_location(r) for r in records]
        return DirectoryResult(success=True, data=records, count=count)

    async def read_profile(self, token: str, user_id: str) -> dict[str, Any] | None:
        """Read a user's directory profile. Returns None when unavailable."""
        path = settings.directory_user_read_path.format(user_id=user_id)
        result = await self._raced(
            "GET " + path,
            self._client.get(path, headers=self._headers(user_token=token)),
        )
        if result is None:
            return None
        response = result.get("response")
        return response if isinstance(response, dict) else None

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any] | None:
        return await self._raced(
            "POST " + path,
            self._client.post(path, json=body, headers=self._headers()),
        )

    async def _raced(
        self,
        label: str,
        call: Awaitable[httpx.Response],
    ) -> dict[str, Any] | None:
        """Race a request against the timeout and unwrap an OK ``result``."""
        start_time = time.time()
        task = asyncio.ensure_future(call)
        try:
            response = await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            logger.warning("[DIRECTORY] %s timed out after %.0fms", label, self._timeout_s * 1000)
            return None
        except httpx.HTTPError as e:
            logger.warning("[DIRECTORY] %s failed: %s", label, e)
            return None
        finally:
            # Timed out or caller cancelled: the request keeps running unobserved
            if not task.done():
                task.add_done_callback(_discard_result)

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000
            logger.info("[DIRECTORY] %s → %d (%.0fms)", label, response.status_code, elapsed)

        try:
            body = response.json()
        except ValueError:
            logger.warning("[DIRECTORY] %s returned a non-JSON body", label)
            return None

        if not isinstance(body, dict) or body.get("responseCode") != RESPONSE_CODE_OK:
            return None
        result = body.get("result")
        return result if isinstance(result, dict) else {}

    def _headers(self, user_token: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": self._authorization,
            "content-type": "application/json",
        }
        if user_token:
            headers["x-authenticated-user-token"] = user_token
        return headers
