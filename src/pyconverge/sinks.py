"""Downstream consumers of emitted convergence candidates."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Protocol

import aiohttp

from pyconverge.exceptions import PublishError
from pyconverge.ingestion.mqtt import TelemetryMqttRuntime
from pyconverge.models.candidate import ConvergenceCandidate

_logger = logging.getLogger(__name__)


class CandidateSink(Protocol):
    """Receives each candidate the engine decides to emit.

    ``emit`` is called synchronously from the detection pass and must not
    block; sinks doing I/O queue the work.
    """

    def emit(self, candidate: ConvergenceCandidate) -> None: ...


class CallbackSink:
    """Forward candidates to a plain callable."""

    def __init__(self, callback: Callable[[ConvergenceCandidate], None]) -> None:
        self._callback = callback

    def emit(self, candidate: ConvergenceCandidate) -> None:
        self._callback(candidate)


class MqttCandidateSink:
    """Publish candidate events on an MQTT topic."""

    def __init__(self, runtime: TelemetryMqttRuntime, topic: str) -> None:
        self._runtime = runtime
        self._topic = topic

    def emit(self, candidate: ConvergenceCandidate) -> None:
        self._runtime.publish(self._topic, candidate.to_event())


class WebhookSink:
    """POST candidate events as JSON to a downstream URL.

    Candidates are queued by :meth:`emit` and delivered by a background
    worker so detection never waits on the network. Delivery failures
    are logged and the candidate is dropped.

    Usage::

        async with WebhookSink("https://example.invalid/hooks/converge") as sink:
            engine.add_sink(sink)
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 5.0,
        max_queue: int = 1000,
    ) -> None:
        self._url = url
        self._external_session = session is not None
        self._http_session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._queue: asyncio.Queue[ConvergenceCandidate] = asyncio.Queue(maxsize=max_queue)
        self._worker: asyncio.Task[None] | None = None

    async def __aenter__(self) -> WebhookSink:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def start(self) -> None:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="pyconverge-webhook")

    async def close(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def emit(self, candidate: ConvergenceCandidate) -> None:
        if self._worker is None:
            raise PublishError("Webhook sink not started", sink="webhook")
        try:
            self._queue.put_nowait(candidate)
        except asyncio.QueueFull as exc:
            raise PublishError("Webhook queue full", sink="webhook") from exc

    async def deliver(self, candidate: ConvergenceCandidate) -> None:
        """POST a single candidate event."""
        if self._http_session is None:
            raise PublishError("Webhook sink not started", sink="webhook")
        body = json.dumps(candidate.to_event(), separators=(",", ":"))
        headers = {"content-type": "application/json; charset=UTF-8"}
        _logger.debug("POST %s candidate=%s", self._url, candidate.id)
        try:
            async with self._http_session.post(
                self._url, data=body, headers=headers, timeout=self._timeout
            ) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise PublishError(
                        f"HTTP {resp.status} from {self._url}: {text[:200]}",
                        sink="webhook",
                        status_code=resp.status,
                    )
        except PublishError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise PublishError(f"Request to {self._url} failed: {exc}", sink="webhook") from exc

    async def _run(self) -> None:
        while True:
            candidate = await self._queue.get()
            try:
                await self.deliver(candidate)
            except PublishError as exc:
                _logger.warning("Dropping candidate %s: %s", candidate.id, exc)
            finally:
                self._queue.task_done()
