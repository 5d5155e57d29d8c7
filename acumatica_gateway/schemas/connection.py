from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, HttpUrl, TypeAdapter, ValidationError, field_validator


_HTTP_URL = TypeAdapter(HttpUrl)

ConnectionStatus = Literal["active", "inactive"]
TokenStatus = Literal["cached", "expired", "none"]


class ConnectionBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    status: ConnectionStatus = "active"
    instance_url: str = Field(min_length=1, max_length=500)
    api_version: Optional[str] = Field(default=None, max_length=32)
    client_id: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    company_name: Optional[str] = Field(default=None, max_length=255)
    branch_id: Optional[str] = Field(default=None, max_length=64)
    metadata: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )

    @field_validator("instance_url")
    @classmethod
    def _validate_instance_url(cls, value: str) -> str:
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError("instance_url must be an absolute http(s) URL") from exc
        return value.rstrip("/")


class ConnectionCreate(ConnectionBase):
    client_secret: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ConnectionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[ConnectionStatus] = None
    api_version: Optional[str] = Field(None, max_length=32)
    client_id: Optional[str] = Field(None, min_length=1, max_length=255)
    client_secret: Optional[str] = Field(None, min_length=1)
    username: Optional[str] = Field(None, min_length=1, max_length=255)
    password: Optional[str] = Field(None, min_length=1)
    company_name: Optional[str] = Field(None, max_length=255)
    branch_id: Optional[str] = Field(None, max_length=64)
    metadata: Optional[dict[str, Any]] = None


class ConnectionRead(ConnectionBase):
    id: uuid.UUID
    api_version: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConnectionWithToken(ConnectionRead):
    token_status: TokenStatus = Field(
        description="State of the cached access token for this connection's instance and user.",
    )
    token_expires_at: Optional[datetime] = None


class TokenRefreshResponse(BaseModel):
    connection_id: uuid.UUID
    refreshed: bool
    expires_at: Optional[datetime]
