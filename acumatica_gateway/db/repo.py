from __future__ import annotations

import uuid
from typing import Iterable

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from acumatica_gateway.core.security import decrypt_secret, encrypt_secret
from acumatica_gateway.db.models import Connections
from acumatica_gateway.schemas.connection import ConnectionCreate, ConnectionUpdate
from acumatica_gateway.services.token_manager import AcumaticaCredentials


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Connection name already in use",
        ) from exc


async def create_connection(
    session: AsyncSession,
    payload: ConnectionCreate,
    *,
    fernet_key: str,
    default_api_version: str,
) -> Connections:
    connection = Connections(
        name=payload.name,
        status=payload.status,
        instance_url=payload.instance_url,
        api_version=payload.api_version or default_api_version,
        client_id=payload.client_id,
        client_secret_enc=encrypt_secret(fernet_key, payload.client_secret),
        username=payload.username,
        password_enc=encrypt_secret(fernet_key, payload.password),
        company_name=payload.company_name,
        branch_id=payload.branch_id,
        metadata_json=payload.metadata,
    )
    session.add(connection)
    await _flush(session)
    await session.refresh(connection)
    return connection


async def list_connections(session: AsyncSession) -> Iterable[Connections]:
    result = await session.execute(
        select(Connections).order_by(Connections.created_at.desc())
    )
    return result.scalars().all()


async def get_connection_by_id(session: AsyncSession, connection_id: uuid.UUID) -> Connections:
    result = await session.execute(
        select(Connections).where(Connections.id == connection_id)
    )
    connection = result.scalar_one_or_none()
    if connection is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Connection not found",
        )
    return connection


async def update_connection(
    session: AsyncSession,
    connection: Connections,
    payload: ConnectionUpdate,
    *,
    fernet_key: str,
) -> Connections:
    if payload.name is not None:
        connection.name = payload.name
    if payload.status is not None:
        connection.status = payload.status
    if payload.api_version is not None:
        connection.api_version = payload.api_version
    if payload.client_id is not None:
        connection.client_id = payload.client_id
    if payload.client_secret is not None:
        connection.client_secret_enc = encrypt_secret(fernet_key, payload.client_secret)
    if payload.username is not None:
        connection.username = payload.username
    if payload.password is not None:
        connection.password_enc = encrypt_secret(fernet_key, payload.password)
    if payload.company_name is not None:
        connection.company_name = payload.company_name or None
    if payload.branch_id is not None:
        connection.branch_id = payload.branch_id or None
    if payload.metadata is not None:
        connection.metadata_json = payload.metadata
    await _flush(session)
    await session.refresh(connection)
    return connection


async def delete_connection(session: AsyncSession, connection: Connections) -> None:
    await session.delete(connection)
    await session.flush()


def to_credentials(connection: Connections, *, fernet_key: str) -> AcumaticaCredentials:
    return AcumaticaCredentials(
        instance_url=connection.instance_url,
        api_version=connection.api_version,
        client_id=connection.client_id,
        client_secret=decrypt_secret(fernet_key, connection.client_secret_enc),
        username=connection.username,
        password=decrypt_secret(fernet_key, connection.password_enc),
        company_name=connection.company_name,
        branch_id=connection.branch_id,
    )
