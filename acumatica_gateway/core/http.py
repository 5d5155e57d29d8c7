from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import httpx

from acumatica_gateway.core.config import Settings, get_settings


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    header = response.headers.get("Retry-After")
    if not header:
        return None
    try:
        value = float(header)
        return max(value, 0.0)
    except ValueError:
        try:
            retry_time = datetime.strptime(header, "%a, %d %b %Y %H:%M:%S %Z")
            retry_time = retry_time.replace(tzinfo=timezone.utc)
            delta = (retry_time - datetime.now(timezone.utc)).total_seconds()
            return max(delta, 0.0)
        except ValueError:
            return None


def get_async_client(settings: Settings | None = None) -> httpx.AsyncClient:
    settings = settings or get_settings()
    timeout = httpx.Timeout(settings.http_timeout_seconds)
    return httpx.AsyncClient(timeout=timeout)
