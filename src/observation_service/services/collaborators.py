"""Contracts for the sibling services the observation workflow calls.

Implementations live outside this package. Filters and documents use the
platform's camelCase document shape (``_id``, ``externalId``...).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

Document = dict[str, Any]


class SolutionRepository(Protocol):
    """Solution templates and role-scoped solution views."""

    async def solution_documents(
        self, filters: Mapping[str, Any], fields: Sequence[str] | None = None
    ) -> list[Document]: ...

    async def create_program_and_solution_from_template(
        self,
        template_id: str,
        program: Mapping[str, Any],
        user_id: str,
        overrides: Mapping[str, Any],
        is_a_private_program: bool,
    ) -> Document: ...

    async def add_report_information(self, solution_id: str, user_profile: Mapping[str, Any]) -> None: ...

    async def update_solution_document(
        self, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> None: ...

    async def targeted_solution_details(
        self, token: str, claims: Mapping[str, Any], solution_id: str
    ) -> Document | None:
        """The solution as seen by a user with these claims, or None if not targeted."""
        ...

    async def targeted_solutions(
        self,
        token: str,
        claims: Mapping[str, Any],
        solution_type: str,
        search: str = "",
        skip_solutions: Sequence[str] = (),
    ) -> tuple[list[Document], int]:
        """Solutions of a type targeted at these claims, with the total count."""
        ...


class ProgramRepository(Protocol):
    async def list(self, filters: Mapping[str, Any], fields: Sequence[str] | None = None) -> list[Document]: ...


class UserRoleRepository(Protocol):
    async def list(self, filters: Mapping[str, Any], fields: Sequence[str] | None = None) -> list[Document]: ...


class EntityRegistry(Protocol):
    """Registry-side entity lookups used when provisioning from a link."""

    async def entity_ids_by_registry(self, registry_values: Sequence[str]) -> list[str]: ...

    async def user_entities(self, user_id: str) -> list[str]: ...

    async def entity_ids_of_type(self, entity_ids: Sequence[str], entity_type: str) -> list[str]: ...


class EntityTypeHierarchySource(Protocol):
    """Form configuration listing entity-type levels beneath a state, top-down."""

    async def entity_types_for_state(self, state_code: str) -> list[str]: ...


class SubmissionPublisher(Protocol):
    async def push_for_reporting(self, submission_id: str) -> None: ...

    async def push_to_improvement_service(self, submission: Mapping[str, Any]) -> None: ...


class NotificationPublisher(Protocol):
    async def push_user_mapping_notification(self, message: Mapping[str, Any]) -> Mapping[str, Any]:
        """Queue a user notification. The reply carries a ``status`` field."""
        ...


class AppCatalog(Protocol):
    async def app_exists(self, app_name: str) -> bool: ...


@dataclass
class Collaborators:
    """Bundle of collaborator implementations handed to the services."""

    solutions: SolutionRepository
    programs: ProgramRepository
    user_roles: UserRoleRepository
    entity_registry: EntityRegistry
    hierarchy: EntityTypeHierarchySource
    submissions: SubmissionPublisher
    notifications: NotificationPublisher
    apps: AppCatalog
