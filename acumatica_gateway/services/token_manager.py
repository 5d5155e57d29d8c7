from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

import httpx

from acumatica_gateway.core.config import Settings, get_settings
from acumatica_gateway.core.http import get_async_client
from acumatica_gateway.services.errors import AuthenticationError


DEFAULT_EXPIRES_IN = 3600
TOKEN_SCOPE = "api offline_access"


@dataclass(frozen=True)
class AcumaticaCredentials:
    instance_url: str
    api_version: str
    client_id: str
    client_secret: str
    username: str
    password: str
    company_name: Optional[str] = None
    branch_id: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return token_cache_key(self.instance_url, self.username)

    @property
    def base_url(self) -> str:
        return self.instance_url.rstrip("/")


@dataclass
class CachedToken:
    token: str
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def token_cache_key(instance_url: str, username: str) -> str:
    return f"{instance_url}:{username}"


class TokenCache:
    """In-memory access token store keyed by ``instance_url:username``.

    Entries are replaced on refresh and removed only through ``invalidate``;
    stale entries stay in place but are never served by ``get_fresh``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CachedToken] = {}

    def get(self, key: str) -> Optional[CachedToken]:
        return self._entries.get(key)

    def get_fresh(self, key: str, threshold: timedelta) -> Optional[CachedToken]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at > _now() + threshold:
            return entry
        return None

    def set(self, key: str, entry: CachedToken) -> None:
        self._entries[key] = entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@lru_cache(maxsize=1)
def get_token_cache() -> TokenCache:
    return TokenCache()


class TokenManager:
    REFRESH_THRESHOLD = timedelta(minutes=5)

    def __init__(
        self,
        cache: TokenCache | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.cache = cache if cache is not None else get_token_cache()
        self.http_client = http_client
        self._settings = settings
        self.logger = logging.getLogger("acumatica_gateway.services.tokens")

    async def get_token(self, credentials: AcumaticaCredentials) -> str:
        key = credentials.cache_key
        cached = self.cache.get_fresh(key, self.REFRESH_THRESHOLD)
        if cached is not None:
            return cached.token

        payload = await self._token_request(credentials)
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError(
                "Failed to authenticate with Acumatica: token response did not include an access token"
            )
        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        entry = CachedToken(token=token, expires_at=_now() + timedelta(seconds=expires_in))
        self.cache.set(key, entry)
        self.logger.info(
            "token_acquired",
            extra={
                "instance_url": credentials.instance_url,
                "username": credentials.username,
                "expires_at": entry.expires_at.isoformat(),
            },
        )
        return token

    def invalidate(self, instance_url: str, username: str) -> None:
        self.cache.invalidate(token_cache_key(instance_url, username))
        self.logger.info(
            "token_invalidated",
            extra={"instance_url": instance_url, "username": username},
        )

    def cached_expiry(self, credentials: AcumaticaCredentials) -> Optional[datetime]:
        entry = self.cache.get(credentials.cache_key)
        return entry.expires_at if entry else None

    def _build_form(self, credentials: AcumaticaCredentials) -> dict[str, str]:
        username = credentials.username
        if credentials.company_name:
            username = f"{credentials.username}@{credentials.company_name}"
        return {
            "grant_type": "password",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "username": username,
            "password": credentials.password,
            "scope": TOKEN_SCOPE,
        }

    async def _token_request(self, credentials: AcumaticaCredentials) -> dict[str, Any]:
        url = f"{credentials.base_url}/identity/connect/token"
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        data = self._build_form(credentials)
        try:
            if self.http_client is not None:
                response = await self.http_client.post(url, data=data, headers=headers)
            else:
                async with get_async_client(self._settings or get_settings()) as client:
                    response = await client.post(url, data=data, headers=headers)
        except httpx.HTTPError as exc:
            self.logger.error(
                "oauth_token_transport_error",
                extra={"instance_url": credentials.instance_url, "error": str(exc)},
            )
            raise AuthenticationError(f"Failed to authenticate with Acumatica: {exc}") from exc

        if response.status_code >= 400:
            message = _extract_oauth_error(response)
            self.logger.error(
                "oauth_token_error",
                extra={
                    "instance_url": credentials.instance_url,
                    "status": response.status_code,
                    "body": response.text,
                },
            )
            raise AuthenticationError(f"Failed to authenticate with Acumatica: {message}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationError(
                "Failed to authenticate with Acumatica: token response was not valid JSON"
            ) from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("Failed to authenticate with Acumatica: unexpected token response")
        return payload


def _extract_oauth_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        description = body.get("error_description") or body.get("error")
        if description:
            return f"{description} (status {response.status_code})"
    text = response.text.strip()
    if text:
        return f"{text} (status {response.status_code})"
    return f"status {response.status_code}"
