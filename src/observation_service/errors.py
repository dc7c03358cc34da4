"""Exception taxonomy for observation operations.

Every error carries an HTTP-style ``status_code`` so the (out of scope)
routing layer can map it without inspecting the message.

- Validation: a required argument is missing. Raised before any I/O.
- Not found: solution, observation, role or entity records are absent.
- Permission: the caller's role/location does not cover the target.
- State: a mutation is not allowed in the observation's current status.
- Upstream: the directory or a collaborator failed where the data is required.
- Notification: best-effort dispatch failed. Never blocks the primary mutation.
"""

from __future__ import annotations


class ObservationServiceError(Exception):
    """Base class for all service errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class MissingArgumentError(ObservationServiceError):
    """A required identifier or token was empty."""

    status_code = 400


class NotFoundError(ObservationServiceError):
    """A referenced record does not exist."""

    status_code = 404


class EntitiesNotFoundError(NotFoundError):
    """Directory lookups produced no entities."""


class UserRolesNotFoundError(NotFoundError):
    """The role code is unknown to the user-roles collaborator."""


class NotRelevantForUserError(ObservationServiceError):
    """The user's role and location do not permit the requested target."""

    status_code = 403


class InvalidStateError(ObservationServiceError):
    """The observation status forbids the requested mutation."""

    status_code = 400


class UpstreamError(ObservationServiceError):
    """A collaborator call failed where its result is required."""

    status_code = 502


class NotificationError(UpstreamError):
    """Notification publishing failed after exhausting retries."""
