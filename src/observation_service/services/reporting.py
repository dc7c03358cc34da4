"""Batch reporting queries over observation submissions.

Ids are selected first, then full rows are fetched in chunks of
``submission_batch_size`` so no single query returns an unbounded row set.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, select
from sqlalchemy.ext.asyncio import AsyncSession

from observation_service import constants
from observation_service.config import settings
from observation_service.errors import NotFoundError
from observation_service.models.enums import SubmissionStatus
from observation_service.models.submission import ObservationSubmission

logger = logging.getLogger(__name__)


def entity_display_name(entity_information: dict[str, Any] | None) -> str:
    """Entity name, falling back to its external id, else empty."""
    info = entity_information or {}
    return info.get("name") or info.get("externalId") or ""


class ReportingService:
    """Pending and completed submission extracts for reporting jobs.

    Usage:
        service = ReportingService(session)
        rows = await service.completed_observations(from_date, to_date)
    """

    def __init__(self, session: AsyncSession, batch_size: int | None = None) -> None:
        self._session = session
        self._batch_size = max(1, batch_size or settings.submission_batch_size)

    async def pending_observations(self) -> list[dict[str, Any]]:
        """Every submission that is not completed."""
        submissions = await self._fetch_in_chunks(
            ObservationSubmission.status != SubmissionStatus.COMPLETED
        )
        return [
            {
                **self._base_record(s),
                "createdAt": s.created_at,
            }
            for s in submissions
        ]

    async def completed_observations(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> list[dict[str, Any]]:
        """Submissions completed within ``[from_date, to_date]``.

        Raises:
            NotFoundError: Nothing completed in the window.
        """
        submissions = await self._fetch_in_chunks(
            ObservationSubmission.status == SubmissionStatus.COMPLETED,
            ObservationSubmission.completed_date.is_not(None),
            ObservationSubmission.completed_date >= from_date,
            ObservationSubmission.completed_date <= to_date,
        )
        if not submissions:
            raise NotFoundError(constants.NO_COMPLETED_OBSERVATIONS)
        return [
            {
                **self._base_record(s),
                "completedDate": s.completed_date,
            }
            for s in submissions
        ]

    async def _fetch_in_chunks(self, *criteria: ColumnElement[bool]) -> list[ObservationSubmission]:
        result = await self._session.execute(
            select(ObservationSubmission.submission_id)
            .where(*criteria)
            .order_by(ObservationSubmission.created_at)
        )
        ids: Sequence[UUID] = result.scalars().all()

        submissions: list[ObservationSubmission] = []
        chunks = 0
        for start in range(0, len(ids), self._batch_size):
            chunk = ids[start:start + self._batch_size]
            rows = await self._session.execute(
                select(ObservationSubmission)
                .where(ObservationSubmission.submission_id.in_(chunk))
                .order_by(ObservationSubmission.created_at)
            )
            submissions.extend(rows.scalars().all())
            chunks += 1

        logger.info(
            "[REPORT] fetched %d submissions in %d chunk(s)",
            len(submissions), chunks,
        )
        return submissions

    @staticmethod
    def _base_record(submission: ObservationSubmission) -> dict[str, Any]:
        return {
            "_id": str(submission.submission_id),
            "userId": submission.created_by,
            "solutionId": submission.solution_id,
            "entityId": submission.entity_id,
            "observationId": str(submission.observation_id),
            "entityName": entity_display_name(submission.entity_information),
            "programId": submission.program_id,
        }
