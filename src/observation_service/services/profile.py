"""Reconcile a stored user profile with the role/location claims of a request.

A profile has two halves that can drift from what the caller claims:

- ``profileUserTypes``: list of ``{type, subType}`` role entries.
- ``userLocations``: list of directory location records (``type``, ``id``, ``code``...).

Each half is either kept or rebuilt wholesale. The input profile is never
mutated, and the result is never written back to the directory.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any

from observation_service import constants
from observation_service.clients.directory import DirectoryClient
from observation_service.schemas import RoleClaims
from observation_service.services.entities import EntityResolver

logger = logging.getLogger(__name__)

ROLE_MISMATCH_FLAG = "userRoleMismatchFoundAndUpdated"
LOCATION_MISMATCH_FLAG = "userLocationsMismatchFoundAndUpdated"


@dataclass
class ProfileReconciliation:
    """Outcome of reconciling a profile against claims."""

    profile_mismatch_found: bool
    data: dict[str, Any]
    roles_updated: bool = False
    locations_updated: bool = False


def _role_entry(role: str) -> dict[str, Any]:
    if role.lower() == constants.TEACHER_ROLE:
        return {"type": constants.TEACHER_ROLE, "subType": None}
    return {"type": constants.ADMINISTRATOR_ROLE, "subType": role.lower()}


def _discriminator(entry: dict[str, Any]) -> str:
    return str(entry.get("subType") or entry.get("type") or "").lower()


def reconcile_roles(
    profile_user_types: list[dict[str, Any]],
    claimed_roles: list[str],
) -> tuple[list[dict[str, Any]], bool]:
    """Return the corrected role list and whether anything was appended.

    Any stored entry not backed by a claimed role marks the whole list as
    stale. Claimed roles missing from the (possibly reset) list are appended.
    """
    claimed = {r.lower() for r in claimed_roles}
    user_types = [dict(e) for e in profile_user_types if isinstance(e, dict)]

    if any(_discriminator(entry) not in claimed for entry in user_types):
        user_types = []

    updated = False
    for role in claimed_roles:
        lowered = role.lower()
        present = any(
            str(entry.get("type") or "").lower() == lowered
            or str(entry.get("subType") or "").lower() == lowered
            for entry in user_types
        )
        if not present:
            user_types.append(_role_entry(role))
            updated = True

    return user_types, updated


def locations_match(user_locations: list[dict[str, Any]], claimed_locations: dict[str, str]) -> bool:
    """True if every claimed location is already in the stored list, one for one.

    Schools are matched by code, every other location type by id.
    """
    if len(user_locations) != len(claimed_locations):
        return False

    for location_type, value in claimed_locations.items():
        match_key = "code" if location_type == constants.SCHOOL_LOCATION_KEY else "id"
        if not any(
            loc.get("type") == location_type and loc.get(match_key) == value
            for loc in user_locations
        ):
            return False
    return True


async def reconcile_profile(
    directory: DirectoryClient,
    stored_profile: dict[str, Any],
    claims: RoleClaims,
) -> ProfileReconciliation:
    """Compare a stored profile with request claims and correct any drift.

    Args:
        directory: Used to resolve claimed location values when rebuilding.
        stored_profile: The directory profile as read for the user.
        claims: Role and location claims from the request.

    Returns:
        ProfileReconciliation whose ``data`` is a corrected copy of the profile.
    """
    profile = copy.deepcopy(stored_profile)
    roles_updated = False
    locations_updated = False

    if claims.roles:
        user_types, roles_updated = reconcile_roles(
            profile.get("profileUserTypes") or [], claims.roles
        )
        if roles_updated:
            profile["profileUserTypes"] = user_types
            profile[ROLE_MISMATCH_FLAG] = True

    if not locations_match(profile.get("userLocations") or [], claims.locations):
        user_locations = await _resolve_locations(directory, list(claims.locations.values()))
        if user_locations:
            locations_updated = True
            profile["userLocations"] = user_locations
            profile[LOCATION_MISMATCH_FLAG] = True

    if roles_updated or locations_updated:
        logger.info(
            "[PROFILE] mismatch for user %s (roles=%s, locations=%s)",
            profile.get("id") or profile.get("userId"), roles_updated, locations_updated,
        )

    return ProfileReconciliation(
        profile_mismatch_found=roles_updated or locations_updated,
        data=profile,
        roles_updated=roles_updated,
        locations_updated=locations_updated,
    )


async def _resolve_locations(directory: DirectoryClient, values: list[str]) -> list[dict[str, Any]]:
    # Ids and codes resolve through separate filters; both sets are kept
    result = await EntityResolver(directory).search_locations(values)
    return result.data
