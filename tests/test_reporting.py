"""Tests for batch reporting queries."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from observation_service.errors import NotFoundError
from observation_service.models import SubmissionStatus
from observation_service.services.reporting import ReportingService, entity_display_name
from observation_service.utils.dates import utcnow

if TYPE_CHECKING:
    from conftest import MakeObservation, MakeSubmission


def test_entity_display_name_fallbacks() -> None:
    assert entity_display_name({"name": "GHPS Anekal", "externalId": "2901"}) == "GHPS Anekal"
    assert entity_display_name({"externalId": "2901"}) == "2901"
    assert entity_display_name(None) == ""


class TestReportingService:
    async def test_pending_excludes_completed(
        self,
        db_session: AsyncSession,
        make_observation: MakeObservation,
        make_submission: MakeSubmission,
    ) -> None:
        observation = make_observation()
        db_session.add(observation)
        started = make_submission(
            observation_id=observation.observation_id,
            entity_id="school-1",
            entity_information={"externalId": "2901"},
        )
        done = make_submission(
            observation_id=observation.observation_id,
            entity_id="school-2",
            status=SubmissionStatus.COMPLETED,
        )
        db_session.add_all([started, done])
        await db_session.flush()

        rows = await ReportingService(db_session).pending_observations()

        [row] = rows
        assert row["_id"] == str(started.submission_id)
        assert row["userId"] == "user-1"
        assert row["observationId"] == str(observation.observation_id)
        assert row["entityName"] == "2901"
        assert "createdAt" in row

    async def test_rows_are_fetched_in_chunks(
        self,
        db_session: AsyncSession,
        make_observation: MakeObservation,
        make_submission: MakeSubmission,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        observation = make_observation()
        db_session.add(observation)
        t0 = utcnow() - timedelta(hours=1)
        db_session.add_all([
            make_submission(
                observation_id=observation.observation_id,
                entity_id=f"school-{i}",
                created_at=t0 + timedelta(minutes=i),
            )
            for i in range(5)
        ])
        await db_session.flush()

        with caplog.at_level(logging.INFO, logger="observation_service.services.reporting"):
            rows = await ReportingService(db_session, batch_size=2).pending_observations()

        assert [r["entityId"] for r in rows] == [f"school-{i}" for i in range(5)]
        assert "in 3 chunk(s)" in caplog.text

    async def test_completed_within_window(
        self,
        db_session: AsyncSession,
        make_observation: MakeObservation,
        make_submission: MakeSubmission,
    ) -> None:
        observation = make_observation()
        db_session.add(observation)
        now = utcnow()
        inside = make_submission(
            observation_id=observation.observation_id,
            entity_id="school-1",
            status=SubmissionStatus.COMPLETED,
            completed_date=now - timedelta(days=2),
            entity_information={"name": "GHPS Anekal"},
        )
        db_session.add_all([
            inside,
            make_submission(
                observation_id=observation.observation_id,
                entity_id="school-2",
                status=SubmissionStatus.COMPLETED,
                completed_date=now - timedelta(days=30),
            ),
            make_submission(observation_id=observation.observation_id, entity_id="school-3"),
        ])
        await db_session.flush()

        rows = await ReportingService(db_session).completed_observations(
            now - timedelta(days=7), now
        )

        [row] = rows
        assert row["_id"] == str(inside.submission_id)
        assert row["entityName"] == "GHPS Anekal"
        assert row["completedDate"] == inside.completed_date

    async def test_nothing_completed_raises(self, db_session: AsyncSession) -> None:
        now = utcnow()

        with pytest.raises(NotFoundError):
            await ReportingService(db_session).completed_observations(now - timedelta(days=7), now)
