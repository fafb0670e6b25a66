"""Pydantic models for the public request-tracking portal."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PortalTrackRequest(BaseModel):
    """Body of ``POST /api/portal/request``."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    request_id: str = Field(min_length=1, alias="requestId")
    contact: str = Field(min_length=3, max_length=200)


class _PortalModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PortalFile(_PortalModel):
    id: str
    name: str
    url: str
    size: int | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")


class PortalStatusChange(_PortalModel):
    id: str
    old_value: str | None = Field(default=None, alias="oldValue")
    new_value: str | None = Field(default=None, alias="newValue")
    created_at: datetime = Field(alias="createdAt")


class PortalAuthor(_PortalModel):
    name: str | None = None
    email: str | None = None


class PortalComment(_PortalModel):
    id: str
    text: str
    created_at: datetime = Field(alias="createdAt")
    author: PortalAuthor | None = None


class TrackedRequest(_PortalModel):
    """Snapshot of an applicant's request as the portal exposes it."""

    id: str
    organization: str | None = None
    description: str | None = None
    status: str
    priority: str | None = None
    category: str | None = None
    sla_deadline: datetime | None = Field(default=None, alias="slaDeadline")
    sla_status: str | None = Field(default=None, alias="slaStatus")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    files: list[PortalFile] = Field(default_factory=list)
    history: list[PortalStatusChange] = Field(default_factory=list)
    comments: list[PortalComment] = Field(default_factory=list)
