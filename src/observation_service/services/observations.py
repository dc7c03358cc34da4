"""Observation lifecycle service.

Creates, reads, lists and mutates observations, reconciles entities into and
out of them, and finds or creates their submissions. Solution, program and
entity records are read-only references obtained from collaborators.

Status flow per observation:
    published -> completed   (driven by the submissions collaborator)
    published/completed -> inactive   (soft deactivation)
Nothing leaves ``inactive``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from observation_service import constants
from observation_service.clients.cache import RoleHierarchyCache
from observation_service.clients.directory import DirectoryClient
from observation_service.config import settings
from observation_service.errors import (
    EntitiesNotFoundError,
    InvalidStateError,
    MissingArgumentError,
    NotFoundError,
    NotRelevantForUserError,
    ObservationServiceError,
)
from observation_service.models.enums import ObservationStatus, SubmissionStatus
from observation_service.models.observation import Observation
from observation_service.models.submission import ObservationSubmission
from observation_service.schemas import ObservationCreate, RoleClaims
from observation_service.services.collaborators import Collaborators, Document
from observation_service.services.entities import EntityResolver
from observation_service.services.notifications import NotificationDispatcher
from observation_service.services.profile import reconcile_profile
from observation_service.services.targeting import RoleTargetingService
from observation_service.utils.dates import as_utc, utcnow, validity_window

logger = logging.getLogger(__name__)

# Solution fields copied onto an observation at creation
SOLUTION_LINKAGE_FIELDS = [
    "name",
    "description",
    "type",
    "isReusable",
    "externalId",
    "programId",
    "programExternalId",
    "frameworkId",
    "frameworkExternalId",
    "entityType",
    "entityTypeId",
    "isAPrivateProgram",
]

# Columns update_observation may not touch
_IMMUTABLE_COLUMNS = frozenset({"observation_id", "solution_id", "created_by", "created_at"})


def _parse_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _unique(values: Iterable[Any]) -> list[str]:
    seen: list[str] = []
    for value in values:
        text = str(value)
        if text not in seen:
            seen.append(text)
    return seen


class ObservationService:
    """Orchestrates the observation lifecycle.

    Mutations are flushed, never committed; the caller owns the unit of work.

    Usage:
        async with async_session_factory() as session:
            service = ObservationService(session, directory, collaborators, cache)
            created = await service.create(solution_id, data, user_id, token)
            await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: DirectoryClient,
        collaborators: Collaborators,
        cache: RoleHierarchyCache,
    ) -> None:
        self._session = session
        self._directory = directory
        self._collaborators = collaborators
        self._solutions = collaborators.solutions
        self._entities = EntityResolver(directory)
        self._targeting = RoleTargetingService(
            directory,
            collaborators.user_roles,
            collaborators.hierarchy,
            collaborators.solutions,
            cache,
        )
        self._notifications = NotificationDispatcher(collaborators.notifications)

    # ── Lookup ──────────────────────────────────────────────────────────────

    async def find_observations(
        self,
        *,
        observation_id: str | UUID | None = None,
        solution_id: str | None = None,
        solution_external_id: str | None = None,
        created_by: str | None = None,
        status: ObservationStatus | None = None,
        exclude_status: ObservationStatus | None = None,
    ) -> list[Observation]:
        """Fetch observations matching every given filter, oldest first.

        A malformed observation id matches nothing.
        """
        query = select(Observation)
        if observation_id is not None:
            parsed = _parse_uuid(observation_id)
            if parsed is None:
                return []
            query = query.where(Observation.observation_id == parsed)
        if solution_id is not None:
            query = query.where(Observation.solution_id == str(solution_id))
        if solution_external_id is not None:
            query = query.where(Observation.solution_external_id == solution_external_id)
        if created_by is not None:
            query = query.where(Observation.created_by == created_by)
        if status is not None:
            query = query.where(Observation.status == status)
        if exclude_status is not None:
            query = query.where(Observation.status != exclude_status)

        result = await self._session.execute(query.order_by(Observation.created_at))
        return list(result.scalars().all())

    async def _first(self, **filters: Any) -> Observation | None:
        observations = await self.find_observations(**filters)
        return observations[0] if observations else None

    # ── Creation ────────────────────────────────────────────────────────────

    async def create(
        self,
        solution_id: str,
        data: Mapping[str, Any],
        user_id: str,
        token: str,
        program_id: str = "",
        claims: RoleClaims | None = None,
    ) -> dict[str, Any]:
        """Create an observation for a solution on behalf of a user.

        A reusable solution is first materialized into a concrete program and
        solution. When claims are given the solution must be targeted at them
        and the claimed roles must cover its entity type.

        Returns:
            ``{"_id", "name", "description"}`` of the new observation.

        Raises:
            MissingArgumentError: Empty token.
            NotFoundError: Unknown solution.
            NotRelevantForUserError: The claims do not permit this solution.
        """
        if not token:
            raise MissingArgumentError(constants.REQUIRED_USER_AUTH_TOKEN)

        solutions = await self._solutions.solution_documents(
            {"_id": solution_id}, SOLUTION_LINKAGE_FIELDS
        )
        if not solutions:
            raise NotFoundError(constants.SOLUTION_NOT_FOUND)

        profile = await self._directory.read_profile(token, user_id)

        if claims is not None and claims.to_dict():
            targeted = await self._solutions.targeted_solution_details(
                token, claims.to_dict(), solution_id
            )
            if targeted is None:
                raise NotRelevantForUserError(constants.SOLUTION_NOT_FOUND_OR_NOT_A_TARGETED)
            if not await self._targeting.validate_user_role(claims, solution_id):
                raise NotRelevantForUserError(constants.OBSERVATION_NOT_RELEVANT_FOR_USER)

        solution = solutions[0]
        if solution.get("isReusable"):
            overrides = {key: value for key, value in data.items() if key != "entities"}
            solution = await self._solutions.create_program_and_solution_from_template(
                solution_id, {"_id": program_id}, user_id, overrides, True
            )

        observation = await self.create_observation(data, user_id, solution, claims, profile)

        if profile and observation.solution_id:
            await self._solutions.add_report_information(
                observation.solution_id, observation.user_profile
            )

        return {
            "_id": str(observation.observation_id),
            "name": observation.name,
            "description": observation.description,
        }

    async def create_observation(
        self,
        data: Mapping[str, Any] | ObservationCreate,
        user_id: str,
        solution: Mapping[str, Any],
        claims: RoleClaims | None = None,
        profile: Mapping[str, Any] | None = None,
    ) -> Observation:
        """Persist an observation linked to ``solution``.

        Entities are filtered to those the directory resolves to the
        solution's entity type. The profile snapshot is reconciled against
        the claims when both are present. Name and description default to
        the solution's; a missing window defaults to the configured validity.
        """
        payload = data if isinstance(data, ObservationCreate) else ObservationCreate.model_validate(data)

        entities = payload.entities
        if entities:
            validation = await self._entities.validate_entities(entities, solution.get("entityType"))
            entities = validation.entity_ids

        user_profile: dict[str, Any] = dict(profile or {})
        role_information = claims.to_dict() if claims is not None else {}
        if role_information and user_profile:
            reconciliation = await reconcile_profile(self._directory, user_profile, claims)
            if reconciliation.profile_mismatch_found:
                user_profile = reconciliation.data

        start_date, end_date = payload.start_date, payload.end_date
        if start_date is None or end_date is None:
            default_start, default_end = validity_window(settings.observation_validity_days)
            start_date = start_date or default_start
            end_date = end_date or default_end

        observation = Observation(
            observation_id=uuid4(),
            name=payload.name or solution.get("name"),
            description=payload.description or solution.get("description"),
            external_id=payload.external_id,
            solution_id=str(solution.get("_id")),
            solution_external_id=solution.get("externalId"),
            program_id=_optional_str(solution.get("programId")),
            program_external_id=solution.get("programExternalId"),
            framework_id=_optional_str(solution.get("frameworkId")),
            framework_external_id=solution.get("frameworkExternalId"),
            entity_type=solution.get("entityType"),
            entity_type_id=_optional_str(solution.get("entityTypeId")),
            entities=entities,
            status=payload.status,
            start_date=start_date,
            end_date=end_date,
            is_a_private_program=solution.get("isAPrivateProgram"),
            created_by=user_id,
            updated_by=user_id,
            project=payload.project.model_dump(by_alias=True) if payload.project else None,
            reference_from=constants.REFERENCE_FROM_PROJECT if payload.project else None,
            link=payload.link,
            user_role_information=role_information,
            user_profile=user_profile,
        )
        self._session.add(observation)
        await self._session.flush()

        logger.info(
            "[OBSERVATION] created %s for solution %s (%d entities)",
            observation.observation_id, observation.solution_id, len(entities),
        )
        return observation

    async def create_from_template(
        self,
        template_id: str,
        user_id: str,
        requested_data: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Materialize a program and solution from a template, then observe it."""
        payload = ObservationCreate.model_validate(requested_data)

        solution_information: dict[str, Any] = {
            "name": payload.name,
            "description": payload.description,
        }
        if payload.project:
            solution_information["project"] = payload.project.model_dump(by_alias=True)
            solution_information["referenceFrom"] = constants.REFERENCE_FROM_PROJECT

        solution = await self._solutions.create_program_and_solution_from_template(
            template_id, payload.program or {}, user_id, solution_information, True
        )

        start_date, end_date = validity_window(settings.observation_validity_days)
        observation = await self.create_observation(
            payload.model_copy(update={"start_date": start_date, "end_date": end_date}),
            user_id,
            solution,
        )

        result = dict(solution)
        result["observationName"] = observation.name
        result["observationId"] = str(observation.observation_id)
        result["observationExternalId"] = observation.external_id
        return {"message": constants.CREATED_SOLUTION, "result": result}

    async def bulk_create(
        self,
        user_id: str,
        solution: Mapping[str, Any],
        entity_document: Mapping[str, Any] | None = None,
    ) -> dict[str, str]:
        """Upsert the user's published observation for a solution.

        An existing published observation for (solution external id, user)
        gains the entity; otherwise a new one is created and the user is
        notified. An entity of the wrong type is reported in the status
        string, not raised.
        """
        entity_document = entity_document or {}
        entity_valid = (
            bool(entity_document.get("_id"))
            and str(solution.get("entityTypeId")) == str(entity_document.get("entityTypeId"))
            and solution.get("entityType") == entity_document.get("entityType")
        )

        existing = await self._first(
            solution_external_id=solution.get("externalId"),
            created_by=user_id,
            status=ObservationStatus.PUBLISHED,
        )
        if existing is not None:
            if not entity_valid:
                return {"status": constants.INVALID_ENTITY_TYPE}
            entity_id = str(entity_document["_id"])
            if entity_id not in existing.entities:
                existing.entities = [*existing.entities, entity_id]
                await self._session.flush()
            return {"status": f"{existing.observation_id} Updated Successfully"}

        start_date, end_date = validity_window(settings.observation_validity_days)
        observation = Observation(
            observation_id=uuid4(),
            name=solution.get("name"),
            description=solution.get("description"),
            solution_id=str(solution.get("_id")),
            solution_external_id=solution.get("externalId"),
            program_id=_optional_str(solution.get("programId")),
            program_external_id=solution.get("programExternalId"),
            framework_id=_optional_str(solution.get("frameworkId")),
            framework_external_id=solution.get("frameworkExternalId"),
            entity_type=solution.get("entityType"),
            entity_type_id=_optional_str(solution.get("entityTypeId")),
            entities=[str(entity_document["_id"])] if entity_valid else [],
            status=ObservationStatus.PUBLISHED,
            start_date=start_date,
            end_date=end_date,
            created_by=user_id,
        )
        self._session.add(observation)
        await self._session.flush()

        try:
            await self._notifications.notify_new_observation(
                user_id,
                solution_type=solution.get("type"),
                solution_id=str(solution.get("_id")),
                program_id=_optional_str(solution.get("programId")),
                observation_id=str(observation.observation_id),
            )
        except ObservationServiceError as e:
            logger.warning(
                "[OBSERVATION] notification for %s not delivered: %s",
                observation.observation_id, e.message,
            )

        return {"status": f"{observation.observation_id} created"}

    # ── Listing and details ─────────────────────────────────────────────────

    async def list_v1(self, user_id: str = "") -> list[dict[str, Any]]:
        """The user's active observations; each entity's submissions oldest first."""
        return await self._list_common(user_id, newest_first=False)

    async def list_v2(self, user_id: str = "") -> list[dict[str, Any]]:
        """Same as :meth:`list_v1` with each entity's submissions newest first."""
        return await self._list_common(user_id, newest_first=True)

    async def _list_common(self, user_id: str, *, newest_first: bool) -> list[dict[str, Any]]:
        if not user_id:
            raise MissingArgumentError(constants.INVALID_USER_ID)

        observations = await self.find_observations(
            created_by=user_id, exclude_status=ObservationStatus.INACTIVE
        )

        all_entities = _unique(e for obs in observations for e in obs.entities or [])
        records_by_key: dict[str, dict[str, Any]] = {}
        if all_entities:
            resolved = await self._entities.search_locations(all_entities)
            for record in resolved.data:
                for key in ("id", "code"):
                    if record.get(key):
                        records_by_key.setdefault(str(record[key]), record)

        listing: list[dict[str, Any]] = []
        for observation in observations:
            submissions_by_entity: dict[str, list[dict[str, Any]]] = {}
            for submission in await self._submissions_for(observation):
                submissions_by_entity.setdefault(submission.entity_id, []).append(
                    submission.to_document()
                )

            entities: list[dict[str, Any]] = []
            for entity_id in observation.entities or []:
                record = records_by_key.get(entity_id)
                if record is None:
                    continue
                submissions = submissions_by_entity.get(entity_id, [])
                # Oldest first here, so the last one is the latest
                status = submissions[-1]["status"] if submissions else "pending"
                entities.append({
                    "_id": record.get("id"),
                    "submissionStatus": status,
                    "submissions": submissions[::-1] if newest_first else submissions,
                    "externalId": record.get("code"),
                    "name": record.get("name"),
                })

            listing.append({
                "_id": str(observation.observation_id),
                "name": observation.name,
                "description": observation.description,
                "entities": entities,
                "startDate": observation.start_date,
                "endDate": observation.end_date,
                "status": observation.status.value,
                "solutionId": observation.solution_id,
            })

        return listing

    async def _submissions_for(self, observation: Observation) -> list[ObservationSubmission]:
        if not observation.entities:
            return []
        result = await self._session.execute(
            select(ObservationSubmission)
            .where(
                ObservationSubmission.observation_id == observation.observation_id,
                ObservationSubmission.entity_id.in_(observation.entities),
            )
            .order_by(ObservationSubmission.created_at, ObservationSubmission.submission_number)
        )
        return list(result.scalars().all())

    async def details(
        self,
        observation_id: str = "",
        solution_id: str = "",
        user_id: str = "",
    ) -> dict[str, Any]:
        """One observation with its entities resolved through the directory.

        Looks up by observation id, or by solution id for a given creator.
        Directory failure yields an empty entity list with zero count.
        """
        if not observation_id and not solution_id:
            raise MissingArgumentError(constants.OBSERVATION_OR_SOLUTION_CHECK)

        filters: dict[str, Any] = {}
        if observation_id:
            filters["observation_id"] = observation_id
        if solution_id:
            if not user_id:
                raise MissingArgumentError(constants.USER_ID_REQUIRED_CHECK)
            filters["solution_id"] = solution_id
            filters["created_by"] = user_id

        observation = await self._first(**filters)
        if observation is None:
            raise NotFoundError(constants.OBSERVATION_NOT_FOUND)

        document = observation.to_document()
        if observation.entities:
            resolved = await self._entities.list_by_location_ids(observation.entities)
            document["entities"] = resolved.data if resolved.success else []
            document["count"] = resolved.count if resolved.success else 0
        return document

    # ── Links ───────────────────────────────────────────────────────────────

    async def get_observation_link(self, solution_external_id: str, app_name: str) -> dict[str, Any]:
        """Shareable app URL for a non-reusable observation solution."""
        solutions = await self._solutions.solution_documents(
            {
                "externalId": solution_external_id,
                "isReusable": False,
                "type": constants.SOLUTION_TYPE_OBSERVATION,
            },
            ["link"],
        )
        if not solutions:
            return {"message": constants.OBSERVATION_NOT_FOUND, "result": {}}

        if not await self._collaborators.apps.app_exists(app_name):
            raise NotFoundError(constants.APP_NOT_FOUND)

        link = (
            settings.app_portal_base_url
            + app_name
            + constants.CREATE_OBSERVATION_PATH
            + str(solutions[0].get("link"))
        )
        return {"message": constants.OBSERVATION_LINK_GENERATED, "result": link}

    async def verify_link(
        self,
        link: str,
        token: str,
        user_id: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Resolve a shared link to the user's observation, provisioning it on first visit.

        An elapsed active solution is deactivated and reported expired; an
        already inactive one is reported expired without another update.
        """
        if not link:
            raise MissingArgumentError(constants.LINK_REQUIRED_CHECK)
        if not token:
            raise MissingArgumentError(constants.REQUIRED_USER_AUTH_TOKEN)
        if not user_id:
            raise MissingArgumentError(constants.USER_ID_REQUIRED_CHECK)

        solutions = await self._solutions.solution_documents(
            {"link": link, "type": constants.SOLUTION_TYPE_OBSERVATION, "isReusable": False},
            [*SOLUTION_LINKAGE_FIELDS, "subType", "endDate", "status"],
        )
        if not solutions:
            return {"message": constants.INVALID_LINK, "result": []}

        solution = solutions[0]
        expired = {"message": constants.LINK_IS_EXPIRED, "result": []}
        if solution.get("status") != constants.SOLUTION_STATUS_ACTIVE:
            return expired

        end_date = as_utc(solution.get("endDate"))
        if end_date is not None and utcnow() > end_date:
            await self._solutions.update_solution_document(
                {"link": link}, {"status": constants.SOLUTION_STATUS_INACTIVE}
            )
            logger.info("[OBSERVATION] link %s expired, solution deactivated", link)
            return expired

        existing = await self._first(
            solution_external_id=solution.get("externalId"), created_by=user_id
        )
        if existing is not None:
            return {"message": constants.OBSERVATION_LINK_VERIFIED, "result": existing.to_document()}

        entities = await self._entities_for_link_visitor(user_id, solution, body)
        start_date, end_date = validity_window(settings.observation_validity_days)
        observation = await self.create_observation(
            {
                "name": solution.get("name"),
                "description": solution.get("description"),
                "startDate": start_date,
                "endDate": end_date,
                "status": ObservationStatus.PUBLISHED,
                "entities": entities,
                "link": link,
            },
            user_id,
            solution,
        )
        return {"message": constants.OBSERVATION_LINK_VERIFIED, "result": observation.to_document()}

    async def _entities_for_link_visitor(
        self,
        user_id: str,
        solution: Mapping[str, Any],
        body: Mapping[str, Any] | None,
    ) -> list[str]:
        registry = self._collaborators.entity_registry
        claims = RoleClaims.from_body(body)
        registry_values = list(claims.locations.values()) if claims else []

        user_entities = (
            await registry.entity_ids_by_registry(registry_values) if registry_values else []
        )
        if not user_entities:
            user_entities = await registry.user_entities(user_id)
        if not user_entities:
            return []
        return await registry.entity_ids_of_type(user_entities, solution.get("subType"))

    # ── Submissions ─────────────────────────────────────────────────────────

    async def submission_status(
        self,
        observation_id: str,
        entity_id: str,
        user_id: str,
    ) -> dict[str, Any]:
        """Status and number of each live submission for one of the user's entities."""
        observation = await self._first(observation_id=observation_id, created_by=user_id)
        if observation is None or entity_id not in (observation.entities or []):
            raise NotFoundError(constants.OBSERVATION_NOT_FOUND)

        result = await self._session.execute(
            select(ObservationSubmission)
            .where(
                ObservationSubmission.observation_id == observation.observation_id,
                ObservationSubmission.entity_id == entity_id,
                ObservationSubmission.is_deleted.is_(False),
            )
            .order_by(ObservationSubmission.submission_number)
        )
        submissions = result.scalars().all()
        if not submissions:
            raise NotFoundError(constants.OBSERVATION_SUBMISSION_NOT_FOUND)

        return {
            "message": constants.OBSERVATION_SUBMISSIONS_LIST_FETCHED,
            "data": [
                {
                    "_id": str(s.submission_id),
                    "status": s.status.value,
                    "submissionNumber": s.submission_number,
                }
                for s in submissions
            ],
        }

    async def find_submission(self, document: Mapping[str, Any]) -> dict[str, Any]:
        """Find or create the submission for (observation, entity, submission number).

        Concurrent creators collide on the unique key; the loser's insert is
        rolled back to its savepoint and it returns the winner's row. Only
        the creating call publishes the new submission downstream.
        """
        observation_id = _parse_uuid(document.get("observationId"))
        entity_id = str(document.get("entityId") or "")
        if observation_id is None or not entity_id:
            raise MissingArgumentError(constants.INVALID_OBSERVATION_ENTITY_ID)
        submission_number = int(document.get("submissionNumber") or 1)

        existing = await self._submission_by_key(observation_id, entity_id, submission_number)
        if existing is not None:
            return {"message": constants.FOUND_SUBMISSION, "result": existing.to_document()}

        submission = ObservationSubmission(
            submission_id=uuid4(),
            observation_id=observation_id,
            solution_id=str(document.get("solutionId")),
            program_id=_optional_str(document.get("programId")),
            entity_id=entity_id,
            entity_type=document.get("entityType"),
            submission_number=submission_number,
            status=SubmissionStatus(document.get("status") or SubmissionStatus.STARTED),
            created_by=document.get("createdBy"),
            entity_information=document.get("entityInformation"),
            reference_from=document.get("referenceFrom"),
            project=document.get("project"),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(submission)
        except IntegrityError:
            logger.info(
                "[OBSERVATION] submission %s/%s #%d created concurrently, re-reading",
                observation_id, entity_id, submission_number,
            )
            winner = await self._submission_by_key(observation_id, entity_id, submission_number)
            if winner is None:
                raise
            return {"message": constants.FOUND_SUBMISSION, "result": winner.to_document()}

        await self._publish_new_submission(submission)
        return {"message": constants.FOUND_SUBMISSION, "result": submission.to_document()}

    async def _submission_by_key(
        self,
        observation_id: UUID,
        entity_id: str,
        submission_number: int,
    ) -> ObservationSubmission | None:
        result = await self._session.execute(
            select(ObservationSubmission).where(
                ObservationSubmission.observation_id == observation_id,
                ObservationSubmission.entity_id == entity_id,
                ObservationSubmission.submission_number == submission_number,
            )
        )
        return result.scalar_one_or_none()

    async def _publish_new_submission(self, submission: ObservationSubmission) -> None:
        publisher = self._collaborators.submissions
        if submission.reference_from == constants.REFERENCE_FROM_PROJECT:
            try:
                await publisher.push_to_improvement_service(submission.to_document())
            except Exception:
                logger.exception(
                    "[OBSERVATION] improvement push failed for %s", submission.submission_id
                )
        try:
            await publisher.push_for_reporting(str(submission.submission_id))
        except Exception:
            logger.exception("[OBSERVATION] reporting push failed for %s", submission.submission_id)

    async def find_last_submission_number(self, observation_id: str, entity_id: str) -> int:
        """Number of the most recently created submission, or 0 if there is none."""
        parsed = _parse_uuid(observation_id) if observation_id else None
        if parsed is None or not entity_id:
            raise MissingArgumentError(constants.INVALID_OBSERVATION_ENTITY_ID)

        result = await self._session.execute(
            select(ObservationSubmission.submission_number)
            .where(
                ObservationSubmission.observation_id == parsed,
                ObservationSubmission.entity_id == entity_id,
            )
            .order_by(
                ObservationSubmission.created_at.desc(),
                ObservationSubmission.submission_number.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() or 0

    # ── Entities ────────────────────────────────────────────────────────────

    async def entities(
        self,
        user_id: str,
        token: str,
        observation_id: str,
        solution_id: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Entities of an observation, creating the user's observation if needed.

        Without an observation id the user's observation for the solution is
        used, or created from the solution as targeted at the body's claims.
        Errors are returned in the envelope, never raised.
        """
        try:
            if not observation_id:
                observation_id = await self._observation_for_solution(
                    user_id, token, solution_id, body
                )

            observation = await self._first(observation_id=observation_id)
            if observation is None:
                raise NotFoundError(constants.OBSERVATION_NOT_FOUND)
            listed = await self._entities_of(observation)

            solutions = await self._solutions.solution_documents(
                {"_id": observation.solution_id}, ["allowMultipleAssessemts", "license"]
            )
            solution: Document = solutions[0] if solutions else {}
        except ObservationServiceError as e:
            return {"status": e.status_code, "success": False, "message": e.message, "data": []}

        return {
            "success": True,
            "message": constants.OBSERVATION_ENTITIES_FETCHED,
            "data": {
                "allowMultipleAssessemts": solution.get("allowMultipleAssessemts"),
                "_id": str(observation.observation_id),
                "entities": listed["entities"],
                "entityType": listed["entityType"],
                "license": solution.get("license"),
            },
        }

    async def _observation_for_solution(
        self,
        user_id: str,
        token: str,
        solution_id: str,
        body: Mapping[str, Any] | None,
    ) -> str:
        existing = await self._first(solution_id=solution_id, created_by=user_id)
        if existing is not None:
            return str(existing.observation_id)

        claims = RoleClaims.from_body(body) or RoleClaims()
        solution_view = await self._solutions.targeted_solution_details(
            token, claims.to_dict(), solution_id
        )
        if solution_view is None:
            raise NotFoundError(constants.SOLUTION_DETAILS_NOT_FOUND)

        data = {key: value for key, value in solution_view.items() if key != "_id"}
        data["startDate"], data["endDate"] = validity_window(settings.observation_validity_days)
        data["status"] = ObservationStatus.PUBLISHED

        entity_type = data.get("entityType")
        if entity_type in claims.locations:
            resolved = await self._entities.list_by_location_ids([claims.locations[entity_type]])
            if not resolved.success:
                raise EntitiesNotFoundError(constants.ENTITIES_NOT_FOUND)
            data["entities"] = [resolved.data[0]["_id"]]

        created = await self.create(solution_id, data, user_id, token, "", claims)
        return created["_id"]

    async def list_entities(self, observation_id: str) -> dict[str, Any]:
        """Directory-resolved entities of an observation with submission counts."""
        try:
            observation = await self._first(observation_id=observation_id)
            if observation is None:
                raise NotFoundError(constants.OBSERVATION_NOT_FOUND)
            listed = await self._entities_of(observation)
        except ObservationServiceError as e:
            return {"success": False, "message": e.message, "data": []}

        return {"success": True, "message": constants.OBSERVATION_ENTITIES_FETCHED, "data": listed}

    async def _entities_of(self, observation: Observation) -> dict[str, Any]:
        entities: list[dict[str, Any]] = []
        if observation.entities:
            resolved = await self._entities.search_locations(observation.entities)
            if not resolved.data:
                raise EntitiesNotFoundError(constants.ENTITIES_NOT_FOUND)

            for record in resolved.data:
                # Stored entities may be either the location id or its code
                keys = [str(record[k]) for k in ("id", "code") if record.get(k)]
                result = await self._session.execute(
                    select(ObservationSubmission.submission_id).where(
                        ObservationSubmission.observation_id == observation.observation_id,
                        ObservationSubmission.entity_id.in_(keys),
                    )
                )
                submission_ids = result.scalars().all()

                entity: dict[str, Any] = {
                    "_id": record.get("id"),
                    "externalId": record.get("code"),
                    "name": record.get("name"),
                    "submissionsCount": len(submission_ids),
                }
                if len(submission_ids) == 1:
                    entity["submissionId"] = str(submission_ids[0])
                entities.append(entity)

        return {"entities": entities, "entityType": observation.entity_type}

    async def add_entity_to_observation(
        self,
        observation_id: str,
        requested_ids: Iterable[Any],
        user_id: str,
    ) -> dict[str, str]:
        """Add the requested entities that resolve to the observation's entity type.

        Raises:
            NotFoundError: No active observation of this user with that id.
            InvalidStateError: The observation is not published.
        """
        observation = await self._first(
            observation_id=observation_id,
            created_by=user_id,
            exclude_status=ObservationStatus.INACTIVE,
        )
        if observation is None:
            raise NotFoundError(constants.OBSERVATION_NOT_FOUND)
        if observation.status != ObservationStatus.PUBLISHED:
            raise InvalidStateError(constants.OBSERVATION_NOT_PUBLISHED)

        requested = _unique(requested_ids)
        validation = await self._entities.validate_entities(requested, observation.entity_type)

        current = list(observation.entities or [])
        additions = [e for e in validation.entity_ids if e not in current]
        if additions:
            observation.entities = current + additions
            observation.updated_by = user_id
            await self._session.flush()

        if len(validation.entity_ids) != len(requested):
            return {"message": constants.ENTITIES_NOT_UPDATE}
        return {"message": constants.UPDATED_SUCCESSFULLY}

    async def remove_entity_from_observation(
        self,
        observation_id: str,
        requested_ids: Iterable[Any],
        user_id: str,
    ) -> dict[str, str]:
        """Drop entities from the user's observation unless it is completed."""
        observation = await self._first(
            observation_id=observation_id,
            created_by=user_id,
            exclude_status=ObservationStatus.COMPLETED,
        )
        if observation is not None:
            removing = {str(e) for e in requested_ids}
            remaining = [e for e in observation.entities or [] if e not in removing]
            if len(remaining) != len(observation.entities or []):
                observation.entities = remaining
                observation.updated_by = user_id
                await self._session.flush()

        return {"message": constants.ENTITY_REMOVED}

    # ── Updates ─────────────────────────────────────────────────────────────

    async def update_observation(
        self,
        observation_id: str,
        values: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Set column values on one observation.

        ``values`` is keyed by column attribute name. Reports ``success=False``
        for a missing id or empty update, an unknown or immutable column, a
        transition out of ``inactive``, or an update that changes nothing.
        """
        try:
            if not observation_id:
                raise MissingArgumentError(constants.UPDATE_QUERY_REQUIRED)
            if not values:
                raise MissingArgumentError(constants.UPDATE_OBJECT_REQUIRED)

            columns = set(Observation.__table__.columns.keys()) - _IMMUTABLE_COLUMNS
            unknown = sorted(set(values) - columns)
            if unknown:
                raise InvalidStateError(f"Cannot update fields: {', '.join(unknown)}")

            observation = await self._first(observation_id=observation_id)
            if observation is None:
                raise NotFoundError(constants.FAILED_TO_UPDATE)

            changes = dict(values)
            if "status" in changes:
                try:
                    changes["status"] = ObservationStatus(changes["status"])
                except ValueError:
                    raise InvalidStateError(f"Unknown status: {changes['status']}") from None
                if (
                    observation.status == ObservationStatus.INACTIVE
                    and changes["status"] != ObservationStatus.INACTIVE
                ):
                    raise InvalidStateError(constants.FAILED_TO_UPDATE)

            modified = {k: v for k, v in changes.items() if getattr(observation, k) != v}
            if not modified:
                raise InvalidStateError(constants.FAILED_TO_UPDATE)

            for key, value in modified.items():
                setattr(observation, key, value)
            await self._session.flush()
        except ObservationServiceError as e:
            return {"success": False, "message": e.message, "data": False}

        logger.info("[OBSERVATION] %s updated: %s", observation_id, sorted(modified))
        return {"success": True, "message": constants.UPDATED_DOCUMENT_SUCCESSFULLY, "data": True}
