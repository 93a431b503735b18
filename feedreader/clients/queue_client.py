from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from feedreader.core.config import Settings, get_settings
from feedreader.core.errors import PublishError, QueueRpcNotFound

API_PREFIX = "/rest/v1/rpc"

logger = logging.getLogger(__name__)


class QueueClient:
    """Publishes feed records and file summaries through the queue RPC surface."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        if not settings.QUEUE_URL:
            raise ValueError("Queue URL required: set QUEUE_URL")
        key = settings.QUEUE_API_KEY
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._rpc_base_url = settings.QUEUE_URL.rstrip("/") + API_PREFIX
        self._client = httpx.Client(
            base_url=self._rpc_base_url,
            headers=headers,
            timeout=settings.QUEUE_TIMEOUT_SECONDS,
        )

    def __enter__(self) -> "QueueClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - context helper
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def rpc_base_url(self) -> str:
        return self._rpc_base_url

    def publish(self, payload: Mapping[str, Any], topic: str, partition_key: str) -> None:
        message = {
            "topic": topic,
            "key": partition_key,
            "payload": dict(payload),
        }
        logger.debug("Queue publish request: %s", message)
        try:
            response = self._client.post("/publish_message", json=message)
        except httpx.HTTPError as exc:
            raise PublishError(topic, str(exc)) from exc
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                logger.error("publish_message RPC not found at %s/publish_message", API_PREFIX)
                raise QueueRpcNotFound(topic) from exc
            raise PublishError(topic, f"HTTP {exc.response.status_code}") from exc
        logger.debug("Published to topic=%s key=%s", topic, partition_key)
