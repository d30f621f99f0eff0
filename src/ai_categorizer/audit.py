import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ai_categorizer.logger import get_logger
from ai_categorizer.models import utcnow

logger = get_logger(__name__)

DEFAULT_AUDIT_TIMEOUT_SECONDS = 5.0


class AuditLogger(ABC):
    """Compliance trail for categorizations and rule promotions."""

    @abstractmethod
    async def log_event(self, kind: str, description: str, metadata: dict[str, Any] | None = None) -> None:
        pass

    async def aclose(self) -> None:
        pass


class LoggingAuditLogger(AuditLogger):
    def __init__(self, logger_name: str = "ai_categorizer.audit.events") -> None:
        self._events = get_logger(logger_name)

    async def log_event(self, kind: str, description: str, metadata: dict[str, Any] | None = None) -> None:
        self._events.info(
            "[AUDIT] %s: %s %s",
            kind,
            description,
            json.dumps(metadata or {}, default=str, sort_keys=True),
        )


class HttpAuditLogger(AuditLogger):
    """Posts each event as JSON to a compliance webhook."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_AUDIT_TIMEOUT_SECONDS,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    async def log_event(self, kind: str, description: str, metadata: dict[str, Any] | None = None) -> None:
        payload = {
            "kind": kind,
            "description": description,
            "metadata": json.loads(json.dumps(metadata or {}, default=str)),
            "timestamp": utcnow().isoformat(),
        }
        client = await self._get_client()
        response = await client.post(self.url, json=payload)
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
