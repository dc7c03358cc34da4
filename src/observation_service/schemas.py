"""Request models for observation operations.

Payloads arrive in the platform's camelCase shape; models accept either
the alias or the field name.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from observation_service.constants import ROLE_CLAIM_KEY
from observation_service.models.enums import ObservationStatus


@dataclass(frozen=True)
class RoleClaims:
    """Role and location claims presented on a request.

    The wire shape is a flat mapping: ``role`` holds a comma-separated list
    of role codes, every other key is a location type (state, district,
    school...) mapped to a location id or code.
    """

    role: str = ""
    locations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Mapping[str, Any] | None) -> RoleClaims | None:
        """Build claims from a request body. Returns None for an empty body."""
        if not body:
            return None
        locations = {
            str(key): str(value)
            for key, value in body.items()
            if key != ROLE_CLAIM_KEY and value not in (None, "")
        }
        return cls(role=str(body.get(ROLE_CLAIM_KEY) or ""), locations=locations)

    @property
    def roles(self) -> list[str]:
        """Individual role codes, whitespace-trimmed, empties dropped."""
        return [r.strip() for r in self.role.split(",") if r.strip()]

    def to_dict(self) -> dict[str, str]:
        """Flatten back to the wire shape for snapshots and collaborator calls."""
        data = dict(self.locations)
        if self.role:
            data[ROLE_CLAIM_KEY] = self.role
        return data


class ProjectReference(BaseModel):
    """The improvement project an observation was started from."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    task_id: str | None = Field(default=None, alias="taskId")


class ObservationCreate(BaseModel):
    """Caller-supplied observation fields.

    Unknown keys are ignored so a role-scoped solution view can be passed
    through as creation data.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    description: str | None = None
    external_id: str | None = Field(default=None, alias="externalId")
    status: ObservationStatus = ObservationStatus.PUBLISHED
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    entities: list[str] = Field(default_factory=list)
    project: ProjectReference | None = None
    link: str | None = None
    program: dict[str, Any] | None = None

    @field_validator("entities", mode="before")
    @classmethod
    def _stringify_entities(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return [str(v) for v in value]
