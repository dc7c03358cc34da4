"""Enumerations for the observation data model."""

from enum import Enum


class ObservationStatus(str, Enum):
    """Lifecycle status of an Observation.

    published → completed is driven by submissions (owned elsewhere).
    published/completed → inactive is a soft deactivation. Nothing leaves inactive.
    """

    PUBLISHED = "published"
    COMPLETED = "completed"
    INACTIVE = "inactive"


class SubmissionStatus(str, Enum):
    """Lifecycle status of an ObservationSubmission."""

    STARTED = "started"
    DRAFT = "draft"
    IN_PROGRESS = "inprogress"
    RATING_PENDING = "ratingPending"
    COMPLETED = "completed"
