from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityResponse(BaseModel):
    connection_id: uuid.UUID
    entity: str
    fetched_at: datetime
    latency_ms: float
    data: Any = None


class EntityListResponse(BaseModel):
    connection_id: uuid.UUID
    entity: str
    items: list[Any] = Field(default_factory=list)
    count: int
    latency_ms: float


class ActionRequest(BaseModel):
    """Target and parameters of an entity action.

    Exactly one identity form is required: ``entity_id`` (internal record id),
    ``keys`` (plain key fields, wrapped before sending) or ``entity`` (an
    already wrapped key record sent unchanged).
    """

    entity_id: Optional[str] = Field(default=None, min_length=1)
    keys: Optional[dict[str, Any]] = None
    entity: Optional[dict[str, Any]] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    wrap_parameters: bool = True

    @model_validator(mode="after")
    def _check_identity(self) -> "ActionRequest":
        provided = [value for value in (self.entity_id, self.keys, self.entity) if value]
        if len(provided) != 1:
            raise ValueError("Provide exactly one of entity_id, keys or entity")
        return self


class ActionResponse(BaseModel):
    connection_id: uuid.UUID
    entity: str
    action: str
    latency_ms: float
    data: Any = None


class OperationStatusResponse(BaseModel):
    connection_id: uuid.UUID
    status_url: str
    latency_ms: float
    data: dict[str, Any]


class PushNotification(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    query: Optional[str] = Field(default=None, alias="Query")
    inserted: Optional[list[dict[str, Any]]] = Field(default=None, alias="Inserted")
    deleted: Optional[list[dict[str, Any]]] = Field(default=None, alias="Deleted")
    id: Any = Field(default=None, alias="Id")
    timestamp: Any = Field(default=None, alias="TimeStamp")
    company_id: Any = Field(default=None, alias="CompanyId")


class WebhookRecord(BaseModel):
    event: str
    action: Literal["inserted", "deleted", "notification"]
    query: str
    companyId: Any
    notificationId: Any
    timestamp: Any
    data: Optional[dict[str, Any]] = None
    raw: Optional[dict[str, Any]] = None
