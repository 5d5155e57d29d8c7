from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from acumatica_gateway.core import logging as logging_utils
from acumatica_gateway.core.config import Settings, get_settings
from acumatica_gateway.db import repo
from acumatica_gateway.db.session import get_session
from acumatica_gateway.schemas.acumatica import (
    ActionRequest,
    ActionResponse,
    EntityListResponse,
    EntityResponse,
    OperationStatusResponse,
)
from acumatica_gateway.services.acumatica_client import AcumaticaClient, key_identity
from acumatica_gateway.services.codec import unwrap, wrap
from acumatica_gateway.services.errors import (
    AcumaticaError,
    ApiError,
    AuthenticationError,
    PollFailedError,
    PollTimeoutError,
    RateLimitError,
)
from acumatica_gateway.services.odata import build_odata_filter, build_query
from acumatica_gateway.services.token_manager import AcumaticaCredentials
from acumatica_gateway.utils.validators import (
    normalize_limit,
    parse_uuid,
    validate_action_name,
    validate_entity_name,
)


router = APIRouter(prefix="/acumatica/{connection_id}", tags=["acumatica"])
logger = logging.getLogger("acumatica_gateway.api.entities")

ClientFactory = Callable[[AcumaticaCredentials], AcumaticaClient]
T = TypeVar("T")


def get_client_factory(settings: Settings = Depends(get_settings)) -> ClientFactory:
    def _factory(credentials: AcumaticaCredentials) -> AcumaticaClient:
        return AcumaticaClient(credentials, settings=settings)

    return _factory


async def get_connection_context(
    connection_id: str,
    session: AsyncSession,
    settings: Settings,
    *,
    require_active: bool = True,
) -> tuple[UUID, AcumaticaCredentials]:
    connection_uuid = parse_uuid(connection_id, "connection_id")
    logging_utils.set_request_context(connection_id=str(connection_uuid))

    connection = await repo.get_connection_by_id(session, connection_uuid)
    if require_active and connection.status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Connection is inactive",
        )
    try:
        credentials = repo.to_credentials(connection, fernet_key=settings.fernet_key)
    except ValueError as exc:
        logger.error("connection_secrets_unreadable", extra={"connection_id": str(connection_uuid)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored connection secrets cannot be decrypted",
        ) from exc
    logging_utils.set_request_context(instance_url=credentials.instance_url)
    return connection_uuid, credentials


def to_http_exception(exc: AcumaticaError) -> HTTPException:
    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "authentication_failed", "message": str(exc), "description": exc.description},
        )
    if isinstance(exc, RateLimitError):
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(int(exc.retry_after))}
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": "rate_limited", "message": str(exc), "description": exc.description},
            headers=headers,
        )
    if isinstance(exc, PollTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    if isinstance(exc, PollFailedError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ApiError) and exc.status_code == status.HTTP_404_NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    upstream = getattr(exc, "status_code", None)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": "acumatica_api_error", "message": str(exc), "upstream_status": upstream},
    )


def _classify_error(exc: AcumaticaError) -> str:
    if isinstance(exc, AuthenticationError):
        return "acumatica_auth"
    if isinstance(exc, RateLimitError):
        return "acumatica_rate_limit"
    if isinstance(exc, (PollTimeoutError, PollFailedError)):
        return "acumatica_operation"
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        return "transport"
    if status_code >= 500:
        return "acumatica_5xx"
    return "acumatica_4xx"


async def _execute(
    *,
    connection_uuid: UUID,
    operation: str,
    entity: Optional[str],
    call: Callable[[], Awaitable[T]],
    payload: Any = None,
) -> tuple[T, float]:
    connection_id = str(connection_uuid)
    logging_utils.log_acumatica_call_started(
        connection_id=connection_id,
        operation=operation,
        entity=entity,
        payload=payload,
    )
    start = perf_counter()
    try:
        result = await call()
    except AcumaticaError as exc:
        http_exc = to_http_exception(exc)
        logging_utils.log_acumatica_call_finished(
            connection_id=connection_id,
            operation=operation,
            entity=entity,
            gateway_status_code=http_exc.status_code,
            upstream_status_code=getattr(exc, "status_code", None),
            latency_ms=(perf_counter() - start) * 1000,
            result="failure",
            error_code=_classify_error(exc),
            error_message=str(exc),
        )
        raise http_exc from exc
    latency_ms = (perf_counter() - start) * 1000
    logging_utils.log_acumatica_call_finished(
        connection_id=connection_id,
        operation=operation,
        entity=entity,
        gateway_status_code=status.HTTP_200_OK,
        upstream_status_code=None,
        latency_ms=latency_ms,
        result="success",
        item_count=len(result) if isinstance(result, list) else None,
    )
    return result, latency_ms


def _entity_path(entity: str, keys: str) -> str:
    segments = [quote(segment, safe="") for segment in keys.split("/") if segment]
    if not segments:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Entity key is required",
        )
    return f"/{entity}/" + "/".join(segments)


def _combine_filters(raw_filter: Optional[str], where: Optional[str]) -> Optional[str]:
    clauses: list[str] = []
    if raw_filter:
        clauses.append(raw_filter)
    if where:
        try:
            conditions = json.loads(where)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="where must be a JSON object",
            ) from exc
        if not isinstance(conditions, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="where must be a JSON object",
            )
        built = build_odata_filter(conditions)
        if built:
            clauses.append(built)
    if not clauses:
        return None
    return " and ".join(clauses)


@router.get(
    "/entities/{entity}",
    response_model=EntityListResponse,
    summary="List entity records",
    description=(
        "Fetches records page by page ($top/$skip) until the data is exhausted or `limit` is reached. "
        "`where` accepts a JSON object of equality conditions joined with `and`."
    ),
)
async def list_entities(
    connection_id: str,
    entity: str,
    filter: Optional[str] = Query(default=None, description="Raw OData $filter expression."),
    where: Optional[str] = Query(default=None),
    expand: Optional[str] = Query(default=None),
    select: Optional[str] = Query(default=None),
    orderby: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    simplify: bool = Query(default=True),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> EntityListResponse:
    validate_entity_name(entity)
    resolved_limit = normalize_limit(limit)
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    query = build_query(
        filter=_combine_filters(filter, where),
        expand=expand,
        select=select,
        orderby=orderby,
    )
    client = client_factory(credentials)
    items, latency_ms = await _execute(
        connection_uuid=connection_uuid,
        operation="list",
        entity=entity,
        call=lambda: client.request_all_items("GET", f"/{entity}", query=query, limit=resolved_limit),
        payload=query,
    )
    if simplify:
        items = [unwrap(item) for item in items]
    return EntityListResponse(
        connection_id=connection_uuid,
        entity=entity,
        items=items,
        count=len(items),
        latency_ms=latency_ms,
    )


@router.get(
    "/entities/{entity}/{entity_keys:path}",
    response_model=EntityResponse,
    summary="Get entity record",
    description="Fetches one record by internal id or by its key fields separated with `/`.",
)
async def get_entity(
    connection_id: str,
    entity: str,
    entity_keys: str,
    expand: Optional[str] = Query(default=None),
    select: Optional[str] = Query(default=None),
    simplify: bool = Query(default=True),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> EntityResponse:
    validate_entity_name(entity)
    endpoint = _entity_path(entity, entity_keys)
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    query = build_query(expand=expand, select=select)
    client = client_factory(credentials)
    data, latency_ms = await _execute(
        connection_uuid=connection_uuid,
        operation="get",
        entity=entity,
        call=lambda: client.request("GET", endpoint, query=query),
    )
    return EntityResponse(
        connection_id=connection_uuid,
        entity=entity,
        fetched_at=datetime.now(timezone.utc),
        latency_ms=latency_ms,
        data=unwrap(data) if simplify else data,
    )


@router.put(
    "/entities/{entity}",
    response_model=EntityResponse,
    summary="Create or update entity record",
    description=(
        "Sends a plain JSON record to Acumatica. Scalar fields are wrapped as `{\"value\": ...}` "
        "unless `raw=true`, in which case the body is forwarded unchanged."
    ),
)
async def put_entity(
    connection_id: str,
    entity: str,
    payload: dict[str, Any] = Body(...),
    raw: bool = Query(default=False),
    expand: Optional[str] = Query(default=None),
    select: Optional[str] = Query(default=None),
    simplify: bool = Query(default=True),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> EntityResponse:
    validate_entity_name(entity)
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    body = payload if raw else wrap(payload)
    if not body:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body has no fields to send",
        )
    query = build_query(expand=expand, select=select)
    client = client_factory(credentials)
    data, latency_ms = await _execute(
        connection_uuid=connection_uuid,
        operation="put",
        entity=entity,
        call=lambda: client.request("PUT", f"/{entity}", body, query),
        payload=payload,
    )
    return EntityResponse(
        connection_id=connection_uuid,
        entity=entity,
        fetched_at=datetime.now(timezone.utc),
        latency_ms=latency_ms,
        data=unwrap(data) if simplify else data,
    )


@router.delete(
    "/entities/{entity}/{entity_keys:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete entity record",
)
async def delete_entity(
    connection_id: str,
    entity: str,
    entity_keys: str,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> Response:
    validate_entity_name(entity)
    endpoint = _entity_path(entity, entity_keys)
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    client = client_factory(credentials)
    await _execute(
        connection_uuid=connection_uuid,
        operation="delete",
        entity=entity,
        call=lambda: client.request("DELETE", endpoint),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/entities/{entity}/actions/{action}",
    response_model=ActionResponse,
    summary="Invoke entity action",
    description="Runs an Acumatica entity action such as ReleaseInvoice or ConfirmShipment.",
)
async def invoke_entity_action(
    connection_id: str,
    entity: str,
    action: str,
    payload: ActionRequest,
    simplify: bool = Query(default=True),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> ActionResponse:
    validate_entity_name(entity)
    validate_action_name(action)
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)

    if payload.entity_id:
        identity: Any = payload.entity_id
    elif payload.keys:
        identity = key_identity(**payload.keys)
    else:
        identity = payload.entity
    parameters = wrap(payload.parameters) if payload.wrap_parameters else payload.parameters

    client = client_factory(credentials)
    data, latency_ms = await _execute(
        connection_uuid=connection_uuid,
        operation=f"action:{action}",
        entity=entity,
        call=lambda: client.invoke_action(f"/{entity}", identity, action, parameters),
        payload=payload.model_dump(),
    )
    return ActionResponse(
        connection_id=connection_uuid,
        entity=entity,
        action=action,
        latency_ms=latency_ms,
        data=unwrap(data) if simplify else data,
    )


@router.get(
    "/operations",
    response_model=OperationStatusResponse,
    summary="Wait for a long-running operation",
    description=(
        "Polls an Acumatica status URL until it reports Completed or Failed, "
        "or the attempt budget is exhausted."
    ),
)
async def poll_operation(
    connection_id: str,
    status_url: str = Query(..., min_length=1),
    max_attempts: Optional[int] = Query(default=None, ge=1, le=600),
    interval_seconds: Optional[float] = Query(default=None, ge=0, le=60),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> OperationStatusResponse:
    connection_uuid, credentials = await get_connection_context(connection_id, session, settings)
    # the bearer token must never be sent to another host
    if not status_url.startswith(f"{credentials.base_url}/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="status_url must belong to the connection's Acumatica instance",
        )
    client = client_factory(credentials)
    data, latency_ms = await _execute(
        connection_uuid=connection_uuid,
        operation="poll",
        entity=None,
        call=lambda: client.poll_operation(
            status_url,
            max_attempts=max_attempts,
            interval_seconds=interval_seconds,
        ),
    )
    return OperationStatusResponse(
        connection_id=connection_uuid,
        status_url=status_url,
        latency_ms=latency_ms,
        data=data,
    )
