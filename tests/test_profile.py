"""Tests for profile reconciliation against request claims."""

from __future__ import annotations

import copy

from observation_service.schemas import RoleClaims
from observation_service.services.profile import (
    LOCATION_MISMATCH_FLAG,
    ROLE_MISMATCH_FLAG,
    locations_match,
    reconcile_profile,
    reconcile_roles,
)

from conftest import SCHOOL_CODE, SCHOOL_ID, STATE_ID, FakeDirectory

CLAIMS = RoleClaims(role="HM,teacher", locations={"state": STATE_ID, "school": SCHOOL_CODE})


class TestReconcileRoles:
    def test_appends_missing_roles(self) -> None:
        user_types, updated = reconcile_roles([], ["HM", "Teacher"])

        assert updated
        assert user_types == [
            {"type": "administrator", "subType": "hm"},
            {"type": "teacher", "subType": None},
        ]

    def test_stale_entry_resets_list(self) -> None:
        stored = [
            {"type": "administrator", "subType": "hm"},
            {"type": "administrator", "subType": "deo"},
        ]

        user_types, updated = reconcile_roles(stored, ["HM"])

        assert updated
        assert user_types == [{"type": "administrator", "subType": "hm"}]

    def test_matching_is_case_insensitive(self) -> None:
        stored = [{"type": "administrator", "subType": "HM"}, {"type": "TEACHER", "subType": None}]

        user_types, updated = reconcile_roles(stored, ["hm", "teacher"])

        assert not updated
        assert user_types == stored


class TestLocationsMatch:
    def test_school_matches_by_code_others_by_id(self) -> None:
        stored = [
            {"type": "state", "id": STATE_ID, "code": "KA"},
            {"type": "school", "id": SCHOOL_ID, "code": SCHOOL_CODE},
        ]

        assert locations_match(stored, {"state": STATE_ID, "school": SCHOOL_CODE})
        assert not locations_match(stored, {"state": STATE_ID, "school": SCHOOL_ID})
        assert not locations_match(stored, {"state": "KA", "school": SCHOOL_CODE})

    def test_count_must_agree(self) -> None:
        stored = [
            {"type": "state", "id": STATE_ID},
            {"type": "district", "id": "d-1"},
        ]

        assert not locations_match(stored, {"state": STATE_ID})
        assert locations_match([], {})


class TestReconcileProfile:
    async def test_rebuilds_drifted_profile(self, directory: FakeDirectory) -> None:
        stored = {
            "id": "user-1",
            "profileUserTypes": [{"type": "administrator", "subType": "deo"}],
            "userLocations": [],
        }

        result = await reconcile_profile(directory, stored, CLAIMS)

        assert result.profile_mismatch_found
        assert result.roles_updated and result.locations_updated
        assert result.data[ROLE_MISMATCH_FLAG] is True
        assert result.data[LOCATION_MISMATCH_FLAG] is True
        assert {(loc["type"], loc["id"]) for loc in result.data["userLocations"]} == {
            ("state", STATE_ID),
            ("school", SCHOOL_ID),
        }

    async def test_is_idempotent(self, directory: FakeDirectory) -> None:
        stored = {"id": "user-1", "profileUserTypes": [], "userLocations": []}

        first = await reconcile_profile(directory, stored, CLAIMS)
        second = await reconcile_profile(directory, first.data, CLAIMS)

        assert first.profile_mismatch_found
        assert not second.profile_mismatch_found
        assert second.data == first.data

    async def test_does_not_mutate_input(self, directory: FakeDirectory) -> None:
        stored = {
            "id": "user-1",
            "profileUserTypes": [{"type": "administrator", "subType": "deo"}],
            "userLocations": [{"type": "state", "id": "other-state"}],
        }
        snapshot = copy.deepcopy(stored)

        await reconcile_profile(directory, stored, CLAIMS)

        assert stored == snapshot

    async def test_only_location_half_changes(self, directory: FakeDirectory) -> None:
        stored = {
            "id": "user-1",
            "profileUserTypes": [
                {"type": "administrator", "subType": "hm"},
                {"type": "teacher", "subType": None},
            ],
            "userLocations": [],
        }

        result = await reconcile_profile(directory, stored, CLAIMS)

        assert result.profile_mismatch_found
        assert not result.roles_updated
        assert ROLE_MISMATCH_FLAG not in result.data
        assert result.data["profileUserTypes"] == stored["profileUserTypes"]

    async def test_unresolvable_locations_leave_profile_untouched(
        self, directory: FakeDirectory
    ) -> None:
        directory.fail = True
        stored = {
            "id": "user-1",
            "profileUserTypes": [
                {"type": "administrator", "subType": "hm"},
                {"type": "teacher", "subType": None},
            ],
            "userLocations": [],
        }

        result = await reconcile_profile(directory, stored, CLAIMS)

        assert not result.profile_mismatch_found
        assert not result.locations_updated
        assert LOCATION_MISMATCH_FLAG not in result.data
        assert result.data == stored
