"""Publish promotion events to NATS so dashboards and chat bots can follow runs.

Subjects are ``<prefix>.<event_type>``, e.g. ``kubepromote.promotion.aborted``;
consumers subscribe on NATS directly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from concurrent.futures import Future
from datetime import datetime
import json
import logging
from threading import Lock, Thread
from typing import Any
from uuid import UUID

from nats.aio.client import Client as NATS

from kubepromote.orchestrator.event_bus import Event

logger = logging.getLogger(__name__)


def encode_event(event: Event) -> bytes:
    return json.dumps(
        {
            "event_id": str(event.event_id),
            "event_type": event.event_type,
            "run_id": str(event.run_id),
            "created_at": event.created_at.isoformat(),
            "payload": event.payload,
        },
        default=str,
    ).encode("utf-8")


def decode_event(data: bytes) -> Event:
    raw = json.loads(data.decode("utf-8"))
    return Event(
        event_id=UUID(raw["event_id"]),
        event_type=raw["event_type"],
        run_id=UUID(raw["run_id"]),
        created_at=datetime.fromisoformat(raw["created_at"]),
        payload=raw["payload"],
    )


class NATSEventBus:
    """Publishes every event to NATS from a background asyncio loop."""

    def __init__(
        self,
        url: str,
        subject_prefix: str = "kubepromote",
        connect_timeout: float = 10.0,
    ) -> None:
        self.subject_prefix = subject_prefix
        self._client = NATS()
        self._pending: list[Future[None]] = []
        self._pending_lock = Lock()
        self._loop = asyncio.new_event_loop()
        self._thread = Thread(target=self._loop.run_forever, name="kubepromote-nats", daemon=True)
        self._thread.start()
        try:
            self._submit(self._client.connect(servers=[url])).result(timeout=connect_timeout)
        except Exception:
            self._stop_loop()
            raise
        logger.info("nats.connected", extra={"extra": {"url": url, "prefix": subject_prefix}})

    def _submit(self, coro: Coroutine[Any, Any, Any]) -> Future[Any]:
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def subject_for(self, event_type: str) -> str:
        return f"{self.subject_prefix}.{event_type}"

    def publish(self, event: Event) -> None:
        future = self._submit(
            self._client.publish(self.subject_for(event.event_type), encode_event(event))
        )
        with self._pending_lock:
            self._pending = [pending for pending in self._pending if not pending.done()]
            self._pending.append(future)

    def close(self, timeout: float = 10.0) -> None:
        """Wait for in-flight publishes, drain the connection and stop the loop."""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        for future in pending:
            exc = future.exception(timeout=timeout)
            if exc is not None:
                logger.warning("nats.publish_failed", extra={"extra": {"reason": str(exc)}})
        try:
            self._submit(self._client.drain()).result(timeout=timeout)
        finally:
            self._stop_loop()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
