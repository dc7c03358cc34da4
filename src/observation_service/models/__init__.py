"""Database models for the observation service."""

from observation_service.models.base import Base, JSONType
from observation_service.models.enums import ObservationStatus, SubmissionStatus
from observation_service.models.observation import Observation
from observation_service.models.submission import ObservationSubmission

__all__ = [
    "Base",
    "JSONType",
    "Observation",
    "ObservationStatus",
    "ObservationSubmission",
    "SubmissionStatus",
]
