"""Role-based targeting: which entity-type levels a role may observe.

A state's form configuration lists its entity-type levels top-down, e.g.
``[state, district, block, school]``. A role declares one or more entity
types; its permitted chain starts at the first level of the hierarchy the
role declares and runs to the bottom.
"""

from __future__ import annotations

import logging

from observation_service import constants
from observation_service.clients.cache import RoleHierarchyCache
from observation_service.clients.directory import DirectoryClient, LocationFilter
from observation_service.errors import (
    EntitiesNotFoundError,
    NotRelevantForUserError,
    ObservationServiceError,
    UserRolesNotFoundError,
)
from observation_service.schemas import RoleClaims
from observation_service.services.collaborators import (
    EntityTypeHierarchySource,
    SolutionRepository,
    UserRoleRepository,
)

logger = logging.getLogger(__name__)


class RoleTargetingService:
    """Resolve permitted entity-type chains and gate observation creation.

    Usage:
        targeting = RoleTargetingService(directory, roles, hierarchy, solutions, cache)
        chain = await targeting.sub_entity_types(claims, "DEO")
    """

    def __init__(
        self,
        directory: DirectoryClient,
        user_roles: UserRoleRepository,
        hierarchy: EntityTypeHierarchySource,
        solutions: SolutionRepository,
        cache: RoleHierarchyCache,
    ) -> None:
        self._directory = directory
        self._user_roles = user_roles
        self._hierarchy = hierarchy
        self._solutions = solutions
        self._cache = cache

    async def sub_entity_types(self, claims: RoleClaims, role: str) -> list[str]:
        """Entity-type levels ``role`` may target, anchored at the user's state.

        Raises:
            UserRolesNotFoundError: Unknown role code.
            EntitiesNotFoundError: State unresolvable or hierarchy empty.
            NotRelevantForUserError: None of the role's types is in the hierarchy.
        """
        roles = await self._user_roles.list({"code": role}, ["entityTypes.entityType"])
        if not roles:
            raise UserRolesNotFoundError(constants.USER_ROLES_NOT_FOUND)

        declared = {
            entry.get("entityType")
            for entry in roles[0].get("entityTypes") or []
            if entry.get("entityType")
        }

        levels = await self._hierarchy_for_state(claims.locations.get(constants.STATE_LOCATION_KEY))

        for index, level in enumerate(levels):
            if level in declared:
                return levels[index:]

        raise NotRelevantForUserError(constants.OBSERVATION_NOT_RELEVANT_FOR_USER)

    async def validate_user_role(self, claims: RoleClaims, solution_id: str) -> bool:
        """Check that the claims allow creating an observation for a solution.

        The longest chain across the claimed roles wins. The solution's entity
        type must be in that chain and the claims must carry a location for
        it. No side effects.
        """
        solutions = await self._solutions.solution_documents({"_id": solution_id}, ["entityType"])
        if not solutions:
            logger.info("[TARGETING] solution %s not found", solution_id)
            return False

        allowed: list[str] = []
        for role in claims.roles:
            try:
                chain = await self.sub_entity_types(claims, role)
            except ObservationServiceError as e:
                logger.debug("[TARGETING] role %s grants nothing: %s", role, e.message)
                continue
            if len(chain) > len(allowed):
                allowed = chain

        entity_type = solutions[0].get("entityType")
        permitted = bool(allowed) and entity_type in allowed and entity_type in claims.locations
        if not permitted:
            logger.info(
                "[TARGETING] roles %s cannot target %s (allowed: %s)",
                claims.role, entity_type, allowed,
            )
        return permitted

    async def _hierarchy_for_state(self, state_id: str | None) -> list[str]:
        if not state_id:
            raise EntitiesNotFoundError(constants.ENTITIES_NOT_FOUND)

        key = constants.SUB_ENTITY_CACHE_PREFIX + state_id
        cached = await self._cache.get(key)
        if cached:
            return cached

        # The form configuration is keyed by state code, not id
        result = await self._directory.location_search(LocationFilter.by_id([state_id]))
        if not result.success or not result.data or not result.data[0].get("code"):
            raise EntitiesNotFoundError(constants.ENTITIES_NOT_FOUND)

        levels = await self._hierarchy.entity_types_for_state(result.data[0]["code"])
        if not levels:
            raise EntitiesNotFoundError(constants.ENTITIES_NOT_FOUND)

        await self._cache.set(key, levels)
        return levels
