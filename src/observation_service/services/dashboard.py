"""Dashboard views: the user's own observations merged with targeted solutions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from observation_service import constants
from observation_service.config import settings
from observation_service.models.observation import Observation
from observation_service.services.collaborators import Collaborators, Document

logger = logging.getLogger(__name__)


def _empty_page(message: str) -> dict[str, Any]:
    return {"success": False, "message": message, "data": {"data": [], "count": 0}}


class DashboardService:
    """Paginated dashboard listings. Failures degrade to empty pages.

    Usage:
        service = DashboardService(session, collaborators)
        page = await service.user_assigned(user_id, page_no=1, page_size=20)
    """

    def __init__(self, session: AsyncSession, collaborators: Collaborators) -> None:
        self._session = session
        self._collaborators = collaborators

    async def user_assigned(
        self,
        user_id: str,
        page_no: int,
        page_size: int,
        search: str = "",
        filter_: str = "",
    ) -> dict[str, Any]:
        """One page of the user's own observations, most recently updated first.

        Args:
            user_id: Creator whose observations are listed.
            page_no: 1-based page number.
            page_size: Rows per page.
            search: Case-insensitive match on name or description.
            filter_: ``createdByMe`` (private or unset program) or
                ``assignedToMe`` (non-private program).

        Returns:
            Envelope with ``data = {"data": [...], "count": total}``.
        """
        try:
            query = select(Observation).where(
                Observation.created_by == user_id,
                Observation.deleted.is_(False),
                or_(
                    Observation.reference_from.is_(None),
                    Observation.reference_from != constants.REFERENCE_FROM_PROJECT,
                ),
            )
            if search:
                query = query.where(
                    or_(
                        Observation.name.icontains(search, autoescape=True),
                        Observation.description.icontains(search, autoescape=True),
                    )
                )
            if filter_ == constants.FILTER_CREATED_BY_ME:
                query = query.where(
                    or_(
                        Observation.is_a_private_program.is_(None),
                        Observation.is_a_private_program.is_(True),
                    )
                )
            elif filter_ == constants.FILTER_ASSIGN_TO_ME:
                query = query.where(Observation.is_a_private_program.is_(False))

            total = await self._session.scalar(
                select(func.count()).select_from(query.subquery())
            )
            result = await self._session.execute(
                query.order_by(Observation.updated_at.desc())
                .offset(page_size * (page_no - 1))
                .limit(page_size)
            )
            rows = [
                {
                    "_id": str(o.observation_id),
                    "name": o.name,
                    "description": o.description,
                    "solutionId": o.solution_id,
                    "programId": o.program_id,
                    "entityType": o.entity_type,
                }
                for o in result.scalars().all()
            ]

            if rows:
                solutions = await self._collaborators.solutions.solution_documents(
                    {"_id": {"$in": _unique_values(rows, "solutionId")}},
                    ["language", "creator"],
                )
                by_id = {str(s.get("_id")): s for s in solutions}
                for row in rows:
                    solution = by_id.get(row["solutionId"])
                    if solution is not None:
                        row["language"] = solution.get("language")
                        row["creator"] = solution.get("creator") or ""
        except Exception as e:
            logger.exception("[DASHBOARD] user-assigned listing failed for %s", user_id)
            return _empty_page(str(e))

        return {
            "success": True,
            "message": constants.USER_ASSIGNED_OBSERVATION_FETCHED,
            "data": {"data": rows, "count": total or 0},
        }

    async def get_observation(
        self,
        claims_body: Mapping[str, Any] | None,
        user_id: str,
        token: str,
        page_size: int,
        page_no: int,
        search: str = "",
    ) -> dict[str, Any]:
        """The user's observations followed by solutions targeted at their claims.

        Targeted solutions already observed by the user are skipped. The
        merged list is paginated as a whole; ``count`` is the sum of both
        totals.
        """
        merged = await self._all_user_assigned(user_id, search)
        total = len(merged)

        solution_ids = _unique_values(merged, "solutionId")
        program_ids = _unique_values(merged, "programId")
        if program_ids:
            try:
                programs = await self._collaborators.programs.list(
                    {"_id": {"$in": program_ids}}, ["name"]
                )
            except Exception as e:
                logger.warning("[DASHBOARD] program lookup failed: %s", e)
                programs = []
            names = {str(p.get("_id")): p.get("name") for p in programs}
            for row in merged:
                if row.get("programId") in names:
                    row["programName"] = names[row["programId"]]

        try:
            targeted, targeted_count = await self._collaborators.solutions.targeted_solutions(
                token,
                dict(claims_body or {}),
                constants.SOLUTION_TYPE_OBSERVATION,
                search,
                solution_ids,
            )
        except Exception as e:
            logger.warning("[DASHBOARD] targeted solutions unavailable for %s: %s", user_id, e)
            targeted, targeted_count = [], 0

        if targeted:
            total += targeted_count
            for solution in targeted:
                entry = {k: v for k, v in solution.items() if k not in ("type", "externalId")}
                entry["solutionId"] = solution.get("_id")
                entry["_id"] = ""
                merged.append(entry)

        start = page_size * (page_no - 1)
        return {
            "success": True,
            "message": constants.TARGETED_OBSERVATION_FETCHED,
            "data": {"data": merged[start:start + page_size], "count": total},
        }

    async def _all_user_assigned(self, user_id: str, search: str) -> list[Document]:
        """Every observation the user owns, fetched in configured-size pages."""
        rows: list[Document] = []
        page_no = 1
        while True:
            page = await self.user_assigned(user_id, page_no, settings.dashboard_page_size, search)
            if not page["success"]:
                break
            batch = page["data"]["data"]
            rows.extend(batch)
            if not batch or len(rows) >= page["data"]["count"]:
                break
            page_no += 1
        return rows


def _unique_values(rows: list[Document], key: str) -> list[str]:
    values: list[str] = []
    for row in rows:
        value = row.get(key)
        if value and value not in values:
            values.append(value)
    return values
