"""Shared pytest fixtures for observation service tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncGenerator, Callable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from fakeredis import aioredis
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from observation_service.clients.cache import RoleHierarchyCache
from observation_service.clients.directory import DirectoryResult, LocationFilter, format_location
from observation_service.models import (
    Base,
    Observation,
    ObservationStatus,
    ObservationSubmission,
    SubmissionStatus,
)
from observation_service.services.collaborators import Collaborators
from observation_service.services.observations import ObservationService
from observation_service.utils.dates import utcnow, validity_window

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# In-memory SQLite shared across the single pooled connection
TEST_DATABASE_URL = "sqlite+aiosqlite://"

STATE_ID = "2f76dcf5-e43b-4f71-a3f2-c8f19e1fce03"
DISTRICT_ID = "b617e607-4f2e-4c1f-a8a5-3a1e4bb4e2a0"
BLOCK_ID = "9a6c1d4e-7f1b-4a6e-9d0e-2b2c3d4e5f60"
SCHOOL_ID = "0e7f9c3a-1b2d-4c5e-8f70-a1b2c3d4e5f6"
SCHOOL_2_ID = "5c4b3a29-1807-4f6e-9d5c-4b3a29180706"
SCHOOL_CODE = "29010100101"
SCHOOL_2_CODE = "29010100102"

LOCATIONS = [
    {"id": STATE_ID, "code": "KA", "name": "Karnataka", "type": "state"},
    {"id": DISTRICT_ID, "code": "KA-D1", "name": "Bengaluru Urban", "type": "district", "parentId": STATE_ID},
    {"id": BLOCK_ID, "code": "KA-B1", "name": "Anekal", "type": "block", "parentId": DISTRICT_ID},
    {"id": SCHOOL_ID, "code": SCHOOL_CODE, "name": "GHPS Anekal", "type": "school", "parentId": BLOCK_ID},
    {"id": SCHOOL_2_ID, "code": SCHOOL_2_CODE, "name": "GLPS Sarjapura", "type": "school", "parentId": BLOCK_ID},
]

HIERARCHY = ["state", "district", "block", "school"]


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory test engine with all tables.

    pysqlite's own transaction handling is disabled so SAVEPOINTs behave;
    every transaction begins explicitly.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(
    test_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session with transaction rollback.

    Each test gets its own transaction that is rolled back at the end,
    ensuring test isolation without needing to recreate tables.
    """
    async_session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_factory() as session:
        async with session.begin():
            yield session
            # Rollback to ensure test isolation
            await session.rollback()


# ── Collaborator doubles ────────────────────────────────────────────────────


def _matches(document: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, condition in filters.items():
        value = document.get(key)
        if isinstance(condition, Mapping) and "$in" in condition:
            if value not in condition["$in"]:
                return False
        elif value != condition:
            return False
    return True


class FakeDirectory:
    """Directory stand-in answering location searches from a fixed record list."""

    def __init__(self, locations: Sequence[dict[str, Any]] = LOCATIONS) -> None:
        self.locations = [dict(r) for r in locations]
        self.profiles: dict[str, dict[str, Any]] = {}
        self.fail = False
        self.searches: list[LocationFilter] = []

    async def location_search(
        self,
        location_filter: LocationFilter,
        *,
        limit: int | None = None,
        offset: int | None = None,
        query: str | None = None,
        format_result: bool = False,
    ) -> DirectoryResult:
        self.searches.append(location_filter)
        if self.fail:
            return DirectoryResult.failed()
        if not location_filter.values:
            return DirectoryResult(success=True)
        records = [
            dict(r) for r in self.locations
            if str(r.get(location_filter.key)) in location_filter.values
        ]
        if format_result:
            records = [format_location(r) for r in records]
        return DirectoryResult(success=True, data=records, count=len(records))

    async def read_profile(self, token: str, user_id: str) -> dict[str, Any] | None:
        profile = self.profiles.get(user_id)
        return copy.deepcopy(profile) if profile is not None else None


class FakeSolutionRepository:
    """In-memory solution store with mockable template and report hooks."""

    def __init__(self, documents: Sequence[dict[str, Any]] = ()) -> None:
        self.documents = [dict(d) for d in documents]
        self.updates: list[tuple[dict[str, Any], dict[str, Any]]] = []
        self.targeted: dict[str, dict[str, Any]] = {}
        self.targeted_list: list[dict[str, Any]] = []
        self.create_program_and_solution_from_template = AsyncMock()
        self.add_report_information = AsyncMock()

    async def solution_documents(
        self, filters: Mapping[str, Any], fields: Sequence[str] | None = None
    ) -> list[dict[str, Any]]:
        return [dict(d) for d in self.documents if _matches(d, filters)]

    async def update_solution_document(
        self, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> None:
        self.updates.append((dict(filters), dict(values)))
        for document in self.documents:
            if _matches(document, filters):
                document.update(values)

    async def targeted_solution_details(
        self, token: str, claims: Mapping[str, Any], solution_id: str
    ) -> dict[str, Any] | None:
        found = self.targeted.get(solution_id)
        return dict(found) if found is not None else None

    async def targeted_solutions(
        self,
        token: str,
        claims: Mapping[str, Any],
        solution_type: str,
        search: str = "",
        skip_solutions: Sequence[str] = (),
    ) -> tuple[list[dict[str, Any]], int]:
        docs = [dict(d) for d in self.targeted_list if d.get("_id") not in skip_solutions]
        return docs, len(docs)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def solutions() -> FakeSolutionRepository:
    return FakeSolutionRepository()


@pytest.fixture
def collaborators(solutions: FakeSolutionRepository) -> Collaborators:
    """Collaborator bundle: in-memory solutions, AsyncMock for the rest."""
    bundle = Collaborators(
        solutions=solutions,
        programs=AsyncMock(),
        user_roles=AsyncMock(),
        entity_registry=AsyncMock(),
        hierarchy=AsyncMock(),
        submissions=AsyncMock(),
        notifications=AsyncMock(),
        apps=AsyncMock(),
    )
    bundle.programs.list.return_value = []
    bundle.user_roles.list.return_value = []
    bundle.hierarchy.entity_types_for_state.return_value = list(HIERARCHY)
    bundle.notifications.push_user_mapping_notification.return_value = {"status": "success"}
    bundle.apps.app_exists.return_value = True
    return bundle


@pytest.fixture
async def cache() -> AsyncGenerator[RoleHierarchyCache, None]:
    client = aioredis.FakeRedis()
    yield RoleHierarchyCache(client, ttl_s=60)
    await client.aclose()


@pytest.fixture
def service(
    db_session: AsyncSession,
    directory: FakeDirectory,
    collaborators: Collaborators,
    cache: RoleHierarchyCache,
) -> ObservationService:
    return ObservationService(db_session, directory, collaborators, cache)


# ── Factories ───────────────────────────────────────────────────────────────


def solution_document(**overrides: Any) -> dict[str, Any]:
    """A concrete (non-reusable) school observation solution."""
    document = {
        "_id": "sol-1",
        "externalId": "SOL-EXT-1",
        "name": "School hygiene walkthrough",
        "description": "Monthly hygiene observation",
        "type": "observation",
        "subType": "school",
        "isReusable": False,
        "programId": "prog-1",
        "programExternalId": "PROG-EXT-1",
        "frameworkId": "fw-1",
        "frameworkExternalId": "FW-EXT-1",
        "entityType": "school",
        "entityTypeId": "et-school",
        "isAPrivateProgram": False,
        "status": "active",
    }
    document.update(overrides)
    return document


# Type aliases for factory fixtures
MakeObservation = Callable[..., Observation]
MakeSubmission = Callable[..., ObservationSubmission]


@pytest.fixture
def make_observation() -> MakeObservation:
    """Factory fixture for creating Observation instances."""

    def _make(
        *,
        observation_id: UUID | None = None,
        created_by: str = "user-1",
        solution_id: str = "sol-1",
        solution_external_id: str = "SOL-EXT-1",
        entities: list[str] | None = None,
        entity_type: str = "school",
        status: ObservationStatus = ObservationStatus.PUBLISHED,
        name: str = "Hygiene round",
        description: str | None = None,
        program_id: str | None = "prog-1",
        is_a_private_program: bool | None = None,
        reference_from: str | None = None,
        deleted: bool = False,
        updated_at: datetime | None = None,
    ) -> Observation:
        start_date, end_date = validity_window(365)
        observation = Observation(
            observation_id=observation_id or uuid4(),
            name=name,
            description=description,
            solution_id=solution_id,
            solution_external_id=solution_external_id,
            program_id=program_id,
            entity_type=entity_type,
            entities=list(entities or []),
            status=status,
            start_date=start_date,
            end_date=end_date,
            created_by=created_by,
            is_a_private_program=is_a_private_program,
            reference_from=reference_from,
            deleted=deleted,
        )
        if updated_at is not None:
            observation.updated_at = updated_at
        return observation

    return _make


@pytest.fixture
def make_submission() -> MakeSubmission:
    """Factory fixture for creating ObservationSubmission instances."""

    def _make(
        *,
        observation_id: UUID,
        entity_id: str,
        submission_number: int = 1,
        status: SubmissionStatus = SubmissionStatus.STARTED,
        solution_id: str = "sol-1",
        created_by: str = "user-1",
        entity_information: dict[str, Any] | None = None,
        completed_date: datetime | None = None,
        created_at: datetime | None = None,
    ) -> ObservationSubmission:
        return ObservationSubmission(
            submission_id=uuid4(),
            observation_id=observation_id,
            solution_id=solution_id,
            program_id="prog-1",
            entity_id=entity_id,
            entity_type="school",
            submission_number=submission_number,
            status=status,
            created_by=created_by,
            entity_information=entity_information,
            completed_date=completed_date,
            created_at=created_at or utcnow(),
        )

    return _make
