"""Observation model: a scheduled assessment bound to a solution and target entities."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from observation_service.models.base import Base, JSONType
from observation_service.models.enums import ObservationStatus
from observation_service.utils.dates import utcnow

if TYPE_CHECKING:
    from observation_service.models.submission import ObservationSubmission


class Observation(Base):
    """An assessment instance created from a solution for a set of entities.

    Solution, program and framework linkage is copied from the solution at
    creation time and never changes afterwards. ``entities`` holds directory
    identifiers (UUIDs or location codes) with no duplicates; writers must
    assign a new list rather than mutate the stored one.

    ``user_profile`` is a snapshot of the creator's directory profile so that
    reporting does not follow later profile edits.
    """

    __tablename__ = "observations"

    observation_id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str | None] = mapped_column(String(1024))
    description: Mapped[str | None] = mapped_column(String(4096))
    external_id: Mapped[str | None] = mapped_column(String(255))

    solution_id: Mapped[str] = mapped_column(String(64), index=True)
    solution_external_id: Mapped[str | None] = mapped_column(String(255), index=True)
    program_id: Mapped[str | None] = mapped_column(String(64), index=True)
    program_external_id: Mapped[str | None] = mapped_column(String(255))
    framework_id: Mapped[str | None] = mapped_column(String(64))
    framework_external_id: Mapped[str | None] = mapped_column(String(255))
    entity_type: Mapped[str | None] = mapped_column(String(255))
    entity_type_id: Mapped[str | None] = mapped_column(String(64))
    entities: Mapped[list[str]] = mapped_column(JSONType, default=list)

    status: Mapped[ObservationStatus] = mapped_column(default=ObservationStatus.PUBLISHED)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_a_private_program: Mapped[bool | None] = mapped_column(Boolean)

    created_by: Mapped[str] = mapped_column(String(255), index=True)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    project: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    reference_from: Mapped[str | None] = mapped_column(String(64))
    link: Mapped[str | None] = mapped_column(String(255), index=True)

    user_role_information: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    user_profile: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    # Python-side defaults keep the values readable on the instance after flush
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    submissions: Mapped[list[ObservationSubmission]] = relationship(back_populates="observation")

    def to_document(self) -> dict[str, Any]:
        """Render the observation in the platform's camelCase document shape."""
        return {
            "_id": str(self.observation_id),
            "name": self.name,
            "description": self.description,
            "externalId": self.external_id,
            "solutionId": self.solution_id,
            "solutionExternalId": self.solution_external_id,
            "programId": self.program_id,
            "programExternalId": self.program_external_id,
            "frameworkId": self.framework_id,
            "frameworkExternalId": self.framework_external_id,
            "entityType": self.entity_type,
            "entityTypeId": self.entity_type_id,
            "entities": list(self.entities or []),
            "status": self.status.value,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "isAPrivateProgram": self.is_a_private_program,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "project": self.project,
            "referenceFrom": self.reference_from,
            "link": self.link,
            "userRoleInformation": self.user_role_information or {},
            "userProfile": self.user_profile or {},
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
