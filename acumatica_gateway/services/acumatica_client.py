from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from acumatica_gateway.core.config import Settings, get_settings
from acumatica_gateway.core.http import get_async_client, parse_retry_after
from acumatica_gateway.services.codec import wrap
from acumatica_gateway.services.errors import ApiError, PollFailedError, PollTimeoutError, RateLimitError
from acumatica_gateway.services.token_manager import AcumaticaCredentials, TokenManager


EntityIdentity = Union[str, Mapping[str, Any]]


def key_identity(**fields: Any) -> dict[str, Any]:
    """Build the wrapped key record form of an action target, e.g. Type + ReferenceNbr."""
    return wrap(fields)


def _identity_body(entity: EntityIdentity) -> dict[str, Any]:
    if isinstance(entity, str):
        return {"id": entity}
    return dict(entity)


def _operation_pending(result: Any) -> bool:
    return not (isinstance(result, dict) and result.get("status") == "Completed")


def _truncate(body: Optional[str], limit: int = 400) -> Optional[str]:
    if body is None:
        return None
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


class AcumaticaClient:
    DEFAULT_PAGE_SIZE = 100
    MAX_PAGE_SIZE = 500

    def __init__(
        self,
        credentials: AcumaticaCredentials,
        *,
        token_manager: TokenManager | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self._settings = settings
        self.token_manager = token_manager or TokenManager(http_client=http_client, settings=settings)
        self.logger = logging.getLogger("acumatica_gateway.services.acumatica")

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def base_url(self) -> str:
        return f"{self.credentials.base_url}/entity/Default/{self.credentials.api_version}"

    def build_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        uri: Optional[str] = None,
    ) -> Any:
        credentials = self.credentials
        token = await self.token_manager.get_token(credentials)
        url = uri or self.build_url(endpoint)

        try:
            response = await self._send(method, url, token, body, query)
        except httpx.HTTPError as exc:
            self.logger.error(
                "acumatica_transport_error",
                extra={"method": method, "url": url, "error": str(exc)},
            )
            raise ApiError(f"Acumatica request failed: {exc}") from exc

        if response.status_code == 401:
            self.logger.warning(
                "acumatica_unauthorized",
                extra={
                    "method": method,
                    "url": url,
                    "instance_url": credentials.instance_url,
                    "username": credentials.username,
                },
            )
            self.token_manager.invalidate(credentials.instance_url, credentials.username)
            token = await self.token_manager.get_token(credentials)
            try:
                response = await self._send(method, url, token, body, query)
            except httpx.HTTPError as exc:
                raise ApiError(f"Acumatica request failed after token refresh: {exc}") from exc
            self._raise_for_status(response, method, url)
            return self._parse(response)

        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            self.logger.warning(
                "acumatica_rate_limited",
                extra={"method": method, "url": url, "retry_after": retry_after},
            )
            raise RateLimitError(retry_after=retry_after)

        self._raise_for_status(response, method, url)
        return self._parse(response)

    async def request_all_items(
        self,
        method: str,
        endpoint: str,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> list[Any]:
        page_query: dict[str, Any] = dict(query or {})
        results: list[Any] = []
        top = min(limit or self.DEFAULT_PAGE_SIZE, self.MAX_PAGE_SIZE)
        skip = 0

        while True:
            page_query["$top"] = top
            page_query["$skip"] = skip
            response = await self.request(method, endpoint, body, page_query)

            if not isinstance(response, list):
                if response is not None:
                    results.append(response)
                break

            results.extend(response)
            if len(response) < top or (limit and len(results) >= limit):
                break
            skip += top

        if limit and len(results) > limit:
            return results[:limit]
        return results

    async def invoke_action(
        self,
        endpoint: str,
        entity: EntityIdentity,
        action: str,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        action_body = {
            "entity": _identity_body(entity),
            "parameters": dict(parameters or {}),
        }
        self.logger.info(
            "acumatica_action_invoked",
            extra={"endpoint": endpoint, "action": action},
        )
        return await self.request("POST", f"{endpoint}/{action}", action_body)

    async def poll_operation(
        self,
        status_url: str,
        *,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        attempts = max_attempts if max_attempts is not None else self.settings.poll_max_attempts
        interval = (
            interval_seconds if interval_seconds is not None else self.settings.poll_interval_seconds
        )
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(interval),
            retry=retry_if_result(_operation_pending),
        )
        try:
            return await retrying(self._poll_status, status_url)
        except RetryError as exc:
            self.logger.error(
                "acumatica_poll_timeout",
                extra={"status_url": status_url, "attempts": attempts},
            )
            raise PollTimeoutError("Operation timed out waiting for completion") from exc

    async def _poll_status(self, status_url: str) -> Any:
        response = await self.request("GET", "", uri=status_url)
        if isinstance(response, dict) and response.get("status") == "Failed":
            message = response.get("message") or "Unknown error"
            raise PollFailedError(f"Operation failed: {message}")
        return response

    def _headers(self, token: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.credentials.branch_id:
            headers["Branch"] = self.credentials.branch_id
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        body: Optional[Mapping[str, Any]],
        query: Optional[Mapping[str, Any]],
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": self._headers(token)}
        if body:
            kwargs["json"] = dict(body)
        if query:
            kwargs["params"] = dict(query)
        if self.http_client is not None:
            return await self.http_client.request(method, url, **kwargs)
        async with get_async_client(self.settings) as client:
            return await client.request(method, url, **kwargs)

    def _raise_for_status(self, response: httpx.Response, method: str, url: str) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text
            status_code = exc.response.status_code
            self.logger.error(
                "acumatica_request_failed",
                extra={"method": method, "url": url, "status": status_code, "body": _truncate(body)},
            )
            raise ApiError(
                f"Acumatica API error: {status_code} {_error_message(exc.response)}",
                status_code=status_code,
                body=body,
            ) from exc

    def _parse(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                "Acumatica returned a response that is not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("exceptionMessage") or payload.get("message")
        if message:
            return str(message)
    return _truncate(response.text) or response.reason_phrase
