from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from acumatica_gateway.api.routes_entities import get_connection_context, to_http_exception
from acumatica_gateway.core import logging as logging_utils
from acumatica_gateway.core.config import Settings, get_settings
from acumatica_gateway.core.security import mask_secret
from acumatica_gateway.db import repo
from acumatica_gateway.db.models import Connections
from acumatica_gateway.db.session import get_session
from acumatica_gateway.schemas.connection import (
    ConnectionCreate,
    ConnectionRead,
    ConnectionUpdate,
    ConnectionWithToken,
    TokenRefreshResponse,
)
from acumatica_gateway.services.errors import AuthenticationError
from acumatica_gateway.services.token_manager import TokenManager, get_token_cache, token_cache_key
from acumatica_gateway.utils.validators import parse_uuid


router = APIRouter(prefix="/connections", tags=["connections"])
logger = logging.getLogger("acumatica_gateway.api.connections")


def get_token_manager(settings: Settings = Depends(get_settings)) -> TokenManager:
    return TokenManager(get_token_cache(), settings=settings)


def _with_token_status(connection: Connections) -> ConnectionWithToken:
    entry = get_token_cache().get(token_cache_key(connection.instance_url, connection.username))
    if entry is None:
        token_status = "none"
    elif entry.expires_at > datetime.now(timezone.utc):
        token_status = "cached"
    else:
        token_status = "expired"
    return ConnectionWithToken(
        **ConnectionRead.model_validate(connection).model_dump(),
        token_status=token_status,
        token_expires_at=entry.expires_at if entry else None,
    )


@router.post(
    "",
    response_model=ConnectionRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_connection(
    payload: ConnectionCreate,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> ConnectionRead:
    connection = await repo.create_connection(
        session,
        payload,
        fernet_key=settings.fernet_key,
        default_api_version=settings.acumatica_api_version,
    )
    await session.commit()
    logging_utils.set_request_context(connection_id=str(connection.id))
    logger.info(
        "connection_created",
        extra={
            "connection_id": str(connection.id),
            "instance_url": connection.instance_url,
            "client_id": mask_secret(connection.client_id),
        },
    )
    return ConnectionRead.model_validate(connection)


@router.get("", response_model=list[ConnectionWithToken])
async def list_connections(
    session: AsyncSession = Depends(get_session),
) -> list[ConnectionWithToken]:
    connections = await repo.list_connections(session)
    return [_with_token_status(connection) for connection in connections]


@router.get("/{connection_id}", response_model=ConnectionWithToken)
async def get_connection(
    connection_id: str,
    session: AsyncSession = Depends(get_session),
) -> ConnectionWithToken:
    connection_uuid = parse_uuid(connection_id, "connection_id")
    logging_utils.set_request_context(connection_id=str(connection_uuid))
    connection = await repo.get_connection_by_id(session, connection_uuid)
    return _with_token_status(connection)


@router.patch("/{connection_id}", response_model=ConnectionRead)
async def update_connection(
    connection_id: str,
    payload: ConnectionUpdate,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    token_manager: TokenManager = Depends(get_token_manager),
) -> ConnectionRead:
    connection_uuid = parse_uuid(connection_id, "connection_id")
    logging_utils.set_request_context(connection_id=str(connection_uuid))
    connection = await repo.get_connection_by_id(session, connection_uuid)
    previous_identity = (connection.instance_url, connection.username)
    updated = await repo.update_connection(session, connection, payload, fernet_key=settings.fernet_key)
    await session.commit()
    # a token issued for the old secrets must not outlive them
    token_manager.invalidate(*previous_identity)
    logger.info("connection_updated", extra={"connection_id": str(connection_uuid)})
    return ConnectionRead.model_validate(updated)


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(
    connection_id: str,
    session: AsyncSession = Depends(get_session),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Response:
    connection_uuid = parse_uuid(connection_id, "connection_id")
    logging_utils.set_request_context(connection_id=str(connection_uuid))
    connection = await repo.get_connection_by_id(session, connection_uuid)
    token_manager.invalidate(connection.instance_url, connection.username)
    await repo.delete_connection(session, connection)
    await session.commit()
    logger.info("connection_deleted", extra={"connection_id": str(connection_uuid)})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{connection_id}/token", response_model=TokenRefreshResponse)
async def refresh_connection_token(
    connection_id: str,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    token_manager: TokenManager = Depends(get_token_manager),
) -> TokenRefreshResponse:
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    token_manager.invalidate(credentials.instance_url, credentials.username)
    try:
        await token_manager.get_token(credentials)
    except AuthenticationError as exc:
        raise to_http_exception(exc) from exc
    logger.info("connection_token_refreshed", extra={"connection_id": str(connection_uuid)})
    return TokenRefreshResponse(
        connection_id=connection_uuid,
        refreshed=True,
        expires_at=token_manager.cached_expiry(credentials),
    )


@router.delete("/{connection_id}/token", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_connection_token(
    connection_id: str,
    session: AsyncSession = Depends(get_session),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Response:
    connection_uuid = parse_uuid(connection_id, "connection_id")
    logging_utils.set_request_context(connection_id=str(connection_uuid))
    connection = await repo.get_connection_by_id(session, connection_uuid)
    token_manager.invalidate(connection.instance_url, connection.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
