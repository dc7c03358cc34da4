"""Submission model: one response record for an (observation, entity) pair."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from observation_service.models.base import Base, JSONType
from observation_service.models.enums import SubmissionStatus
from observation_service.utils.dates import utcnow

if TYPE_CHECKING:
    from observation_service.models.observation import Observation


class ObservationSubmission(Base):
    """A submission against one entity of an observation.

    ``submission_number`` increases per (observation, entity). The unique
    constraint backs the find-or-create lookup: concurrent creators of the
    same tuple collide on insert and the loser re-reads the winner's row.
    Status transitions belong to the submissions subsystem.
    """

    __tablename__ = "observation_submissions"
    __table_args__ = (
        UniqueConstraint(
            "observation_id",
            "entity_id",
            "submission_number",
            name="uq_observation_entity_submission_number",
        ),
    )

    submission_id: Mapped[UUID] = mapped_column(primary_key=True)
    observation_id: Mapped[UUID] = mapped_column(
        ForeignKey("observations.observation_id"), index=True
    )
    solution_id: Mapped[str] = mapped_column(String(64), index=True)
    program_id: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[str] = mapped_column(String(255), index=True)
    entity_type: Mapped[str | None] = mapped_column(String(255))
    submission_number: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[SubmissionStatus] = mapped_column(default=SubmissionStatus.STARTED, index=True)
    created_by: Mapped[str | None] = mapped_column(String(255))
    entity_information: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    reference_from: Mapped[str | None] = mapped_column(String(64))
    project: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    observation: Mapped[Observation] = relationship(back_populates="submissions")

    def to_document(self) -> dict[str, Any]:
        """Render the submission in the platform's camelCase document shape."""
        return {
            "_id": str(self.submission_id),
            "observationId": str(self.observation_id),
            "solutionId": self.solution_id,
            "programId": self.program_id,
            "entityId": self.entity_id,
            "entityType": self.entity_type,
            "submissionNumber": self.submission_number,
            "status": self.status.value,
            "createdBy": self.created_by,
            "entityInformation": self.entity_information,
            "referenceFrom": self.reference_from,
            "project": self.project,
            "isDeleted": self.is_deleted,
            "completedDate": self.completed_date,
            "createdAt": self.created_at,
        }
