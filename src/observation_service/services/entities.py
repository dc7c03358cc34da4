"""Entity resolution against the directory service."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from observation_service.clients.directory import (
    DirectoryClient,
    DirectoryResult,
    LocationFilter,
    split_ids_and_codes,
)

logger = logging.getLogger(__name__)


@dataclass
class EntityValidationResult:
    """Identifiers that resolved to the expected entity type."""

    entity_ids: list[str] = field(default_factory=list)


class EntityResolver:
    """Validate and resolve entity identifiers through the directory."""

    def __init__(self, directory: DirectoryClient) -> None:
        self._directory = directory

    async def validate_entities(
        self,
        requested_ids: Iterable[Any],
        expected_entity_type: str | None,
    ) -> EntityValidationResult:
        """Keep the requested identifiers whose directory type matches.

        Identifiers are classified as UUID ids or location codes and resolved
        with the matching filter. The result holds the caller's own
        identifiers (never the directory's), first-seen order, no duplicates.
        Partial or empty matches are not errors.
        """
        ids, codes = split_ids_and_codes(requested_ids)
        if not ids and not codes:
            return EntityValidationResult()

        matched: set[str] = set()
        for location_filter, record_key in (
            (LocationFilter.by_id(ids), "id"),
            (LocationFilter.by_code(codes), "code"),
        ):
            if not location_filter.values:
                continue
            result = await self._directory.location_search(location_filter)
            if not result.success:
                continue
            for record in result.data:
                if record.get("type") == expected_entity_type and record.get(record_key):
                    matched.add(str(record[record_key]))

        # Preserve caller order
        valid = [value for value in (*ids, *codes) if value in matched]

        if len(valid) != len(ids) + len(codes):
            logger.info(
                "[ENTITIES] %d of %d identifiers resolved to type %s",
                len(valid), len(ids) + len(codes), expected_entity_type,
            )
        return EntityValidationResult(entity_ids=valid)

    async def search_locations(
        self,
        values: Iterable[Any],
        *,
        format_result: bool = False,
    ) -> DirectoryResult:
        """Look up a mix of location ids and codes, concatenating both result sets.

        Succeeds if at least one of the lookups succeeded.
        """
        ids, codes = split_ids_and_codes(values)
        records: list[dict[str, Any]] = []
        count = 0
        succeeded = False

        for location_filter in (LocationFilter.by_id(ids), LocationFilter.by_code(codes)):
            if not location_filter.values:
                continue
            result = await self._directory.location_search(
                location_filter, format_result=format_result
            )
            if result.success:
                succeeded = True
                records.extend(result.data)
                count += result.count

        if not succeeded:
            return DirectoryResult.failed()
        return DirectoryResult(success=True, data=records, count=count)

    async def list_by_location_ids(self, location_ids: Iterable[Any]) -> DirectoryResult:
        """Resolve raw location ids or codes to platform-shaped entity records.

        An empty resolution is reported as a failure.
        """
        result = await self.search_locations(location_ids, format_result=True)
        if not result.data:
            return DirectoryResult.failed()
        return result
