"""Business logic services for the observation lifecycle."""

from observation_service.services.collaborators import Collaborators
from observation_service.services.dashboard import DashboardService
from observation_service.services.entities import EntityResolver, EntityValidationResult
from observation_service.services.notifications import NotificationDispatcher
from observation_service.services.observations import ObservationService
from observation_service.services.profile import ProfileReconciliation, reconcile_profile
from observation_service.services.reporting import ReportingService
from observation_service.services.targeting import RoleTargetingService

__all__ = [
    "Collaborators",
    "DashboardService",
    "EntityResolver",
    "EntityValidationResult",
    "NotificationDispatcher",
    "ObservationService",
    "ProfileReconciliation",
    "reconcile_profile",
    "ReportingService",
    "RoleTargetingService",
]
