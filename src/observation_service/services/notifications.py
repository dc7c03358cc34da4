"""User notification dispatch for newly available observations."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from observation_service import constants
from observation_service.config import settings
from observation_service.errors import MissingArgumentError, NotificationError
from observation_service.services.collaborators import NotificationPublisher

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Publish user-mapping notifications with a bounded retry budget.

    Delivery is at-least-once: a publish that fails after the message was
    queued is retried and may be delivered twice.
    """

    def __init__(
        self,
        publisher: NotificationPublisher,
        *,
        max_attempts: int | None = None,
        retry_delay_s: float | None = None,
    ) -> None:
        self._publisher = publisher
        self._max_attempts = max(1, max_attempts or settings.notification_max_attempts)
        self._retry_delay_s = (
            settings.notification_retry_delay_s if retry_delay_s is None else retry_delay_s
        )

    async def notify_new_observation(
        self,
        user_id: str,
        *,
        solution_type: str | None,
        solution_id: str,
        program_id: str | None,
        observation_id: str,
    ) -> dict[str, Any]:
        """Tell a user that an observation is available.

        Raises:
            MissingArgumentError: Empty user id.
            NotificationError: Every attempt failed.
        """
        if not user_id:
            raise MissingArgumentError(constants.INVALID_USER_ID)

        message = {
            "user_id": user_id,
            "internal": False,
            "text": "New observation available now (Observation form)",
            "type": "information",
            "action": "mapping",
            "payload": {
                "type": solution_type,
                "solution_id": solution_id,
                "program_id": program_id,
                "observation_id": observation_id,
            },
            "title": "New Observation",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "appType": settings.notification_app_type,
        }

        last_status: Any = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                reply = await self._publisher.push_user_mapping_notification(message)
                last_status = reply.get("status")
            except Exception as e:
                last_status = repr(e)
                logger.warning("[NOTIFY] attempt %d/%d raised %r", attempt, self._max_attempts, e)
            else:
                if last_status == constants.NOTIFICATION_STATUS_SUCCESS:
                    return {"success": True, "message": constants.NOTIFICATION_PUSHED}

            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_delay_s)

        raise NotificationError(
            f"Failed to push notification for observation {observation_id} "
            f"in solution {solution_id} (last status: {last_status})"
        )
