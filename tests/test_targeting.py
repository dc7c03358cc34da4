"""Tests for role-based targeting."""

from __future__ import annotations

from typing import Any

import pytest

from observation_service.clients.cache import RoleHierarchyCache
from observation_service.errors import (
    EntitiesNotFoundError,
    NotRelevantForUserError,
    UserRolesNotFoundError,
)
from observation_service.schemas import RoleClaims
from observation_service.services.collaborators import Collaborators
from observation_service.services.targeting import RoleTargetingService

from conftest import (
    DISTRICT_ID,
    SCHOOL_ID,
    STATE_ID,
    FakeDirectory,
    FakeSolutionRepository,
    solution_document,
)

ROLES = {
    "DEO": [{"code": "DEO", "entityTypes": [{"entityType": "district"}]}],
    "BEO": [{"code": "BEO", "entityTypes": [{"entityType": "block"}]}],
    "HM": [{"code": "HM", "entityTypes": [{"entityType": "school"}]}],
    "CRP": [{"code": "CRP", "entityTypes": [{"entityType": "cluster"}]}],
}


@pytest.fixture
def targeting(
    directory: FakeDirectory,
    collaborators: Collaborators,
    solutions: FakeSolutionRepository,
    cache: RoleHierarchyCache,
) -> RoleTargetingService:
    async def roles_by_code(filters: dict[str, Any], fields: Any = None) -> list[dict[str, Any]]:
        return ROLES.get(filters["code"], [])

    collaborators.user_roles.list.side_effect = roles_by_code
    solutions.documents.append(solution_document())
    return RoleTargetingService(
        directory, collaborators.user_roles, collaborators.hierarchy, solutions, cache
    )


def claims(role: str, **locations: str) -> RoleClaims:
    return RoleClaims(role=role, locations={"state": STATE_ID, **locations})


class TestSubEntityTypes:
    async def test_chain_starts_at_declared_level(self, targeting: RoleTargetingService) -> None:
        chain = await targeting.sub_entity_types(claims("DEO"), "DEO")

        assert chain == ["district", "block", "school"]

    async def test_hierarchy_is_looked_up_by_state_code(
        self, targeting: RoleTargetingService, collaborators: Collaborators
    ) -> None:
        await targeting.sub_entity_types(claims("HM"), "HM")

        collaborators.hierarchy.entity_types_for_state.assert_awaited_once_with("KA")

    async def test_second_lookup_is_served_from_cache(
        self,
        targeting: RoleTargetingService,
        collaborators: Collaborators,
        directory: FakeDirectory,
    ) -> None:
        await targeting.sub_entity_types(claims("DEO"), "DEO")
        chain = await targeting.sub_entity_types(claims("BEO"), "BEO")

        assert chain == ["block", "school"]
        assert collaborators.hierarchy.entity_types_for_state.await_count == 1
        assert len(directory.searches) == 1

    async def test_precached_hierarchy_skips_directory(
        self,
        targeting: RoleTargetingService,
        cache: RoleHierarchyCache,
        directory: FakeDirectory,
    ) -> None:
        await cache.set(f"subEntityTypes_{STATE_ID}", ["state", "district", "school"])

        chain = await targeting.sub_entity_types(claims("DEO"), "DEO")

        assert chain == ["district", "school"]
        assert directory.searches == []

    async def test_unknown_role(self, targeting: RoleTargetingService) -> None:
        with pytest.raises(UserRolesNotFoundError):
            await targeting.sub_entity_types(claims("XYZ"), "XYZ")

    async def test_missing_state_claim(self, targeting: RoleTargetingService) -> None:
        with pytest.raises(EntitiesNotFoundError):
            await targeting.sub_entity_types(RoleClaims(role="DEO"), "DEO")

    async def test_unresolvable_state(
        self, targeting: RoleTargetingService, directory: FakeDirectory
    ) -> None:
        directory.fail = True

        with pytest.raises(EntitiesNotFoundError):
            await targeting.sub_entity_types(claims("DEO"), "DEO")

    async def test_empty_hierarchy(
        self, targeting: RoleTargetingService, collaborators: Collaborators
    ) -> None:
        collaborators.hierarchy.entity_types_for_state.return_value = []

        with pytest.raises(EntitiesNotFoundError):
            await targeting.sub_entity_types(claims("DEO"), "DEO")

    async def test_role_type_outside_hierarchy(self, targeting: RoleTargetingService) -> None:
        with pytest.raises(NotRelevantForUserError):
            await targeting.sub_entity_types(claims("CRP"), "CRP")


class TestValidateUserRole:
    async def test_longest_chain_wins(self, targeting: RoleTargetingService) -> None:
        assert await targeting.validate_user_role(claims("DEO,BEO", school=SCHOOL_ID), "sol-1")

    async def test_requires_location_for_solution_entity_type(
        self, targeting: RoleTargetingService
    ) -> None:
        assert not await targeting.validate_user_role(
            claims("DEO,BEO", district=DISTRICT_ID), "sol-1"
        )

    async def test_entity_type_outside_chain(
        self, targeting: RoleTargetingService, solutions: FakeSolutionRepository
    ) -> None:
        solutions.documents[0]["entityType"] = "state"

        assert not await targeting.validate_user_role(claims("DEO", school=SCHOOL_ID), "sol-1")

    async def test_failing_roles_are_skipped(self, targeting: RoleTargetingService) -> None:
        assert await targeting.validate_user_role(claims("XYZ, CRP, HM", school=SCHOOL_ID), "sol-1")

    async def test_no_role_grants_anything(self, targeting: RoleTargetingService) -> None:
        assert not await targeting.validate_user_role(claims("XYZ", school=SCHOOL_ID), "sol-1")

    async def test_unknown_solution(self, targeting: RoleTargetingService) -> None:
        assert not await targeting.validate_user_role(claims("DEO", school=SCHOOL_ID), "missing")
