from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from pyconverge.exceptions import PublishError
from pyconverge.ingestion.mqtt import TelemetryMqttRuntime
from pyconverge.models.candidate import CandidateType, ConvergenceCandidate
from pyconverge.models.point import GeoPoint
from pyconverge.sinks import CallbackSink, MqttCandidateSink, WebhookSink

URL = "https://hooks.example.invalid/converge"


def _candidate() -> ConvergenceCandidate:
    return ConvergenceCandidate(
        id="pair:a:b",
        participants=("a", "b"),
        probability=0.8,
        time_to_meet=40.0,
        meeting_point=GeoPoint(lat=34.0, lng=-118.49),
        type=CandidateType.PAIR,
        confidence=0.9,
    )


class _FakeResponse:
    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class _FakeSession:
    def __init__(self, status: int = 204, body: str = "") -> None:
        self.status = status
        self.body = body
        self.posts: list[dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, *, data: str, headers: dict[str, str], timeout: Any) -> _FakeResponse:
        self.posts.append({"url": url, "data": data, "headers": headers})
        return _FakeResponse(self.status, self.body)

    async def close(self) -> None:
        self.closed = True


class _DummyRuntime:
    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, payload))


def test_callback_sink() -> None:
    received: list[ConvergenceCandidate] = []
    CallbackSink(received.append).emit(_candidate())

    assert [c.id for c in received] == ["pair:a:b"]


def test_mqtt_sink_publishes_event() -> None:
    runtime = _DummyRuntime()
    sink = MqttCandidateSink(runtime, "converge/candidates")  # type: ignore[arg-type]

    sink.emit(_candidate())

    assert runtime.published == [("converge/candidates", _candidate().to_event())]


def test_mqtt_runtime_publish_requires_running_client() -> None:
    runtime = TelemetryMqttRuntime(loop=asyncio.new_event_loop(), on_message=lambda _m: None)
    try:
        with pytest.raises(PublishError) as exc_info:
            runtime.publish("converge/candidates", {"id": "x"})
        assert exc_info.value.sink == "mqtt"
    finally:
        runtime._loop.close()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_webhook_deliver_posts_json() -> None:
    session = _FakeSession()
    sink = WebhookSink(URL, session=session)  # type: ignore[arg-type]

    await sink.deliver(_candidate())

    assert len(session.posts) == 1
    post = session.posts[0]
    assert post["url"] == URL
    assert post["headers"]["content-type"].startswith("application/json")
    assert json.loads(post["data"]) == _candidate().to_event()


@pytest.mark.asyncio
async def test_webhook_deliver_raises_on_http_error() -> None:
    sink = WebhookSink(URL, session=_FakeSession(status=500, body="boom"))  # type: ignore[arg-type]

    with pytest.raises(PublishError) as exc_info:
        await sink.deliver(_candidate())

    assert exc_info.value.status_code == 500
    assert exc_info.value.sink == "webhook"


@pytest.mark.asyncio
async def test_webhook_emit_requires_start() -> None:
    sink = WebhookSink(URL, session=_FakeSession())  # type: ignore[arg-type]

    with pytest.raises(PublishError):
        sink.emit(_candidate())


@pytest.mark.asyncio
async def test_webhook_worker_delivers_queued_candidates() -> None:
    session = _FakeSession()

    async with WebhookSink(URL, session=session) as sink:  # type: ignore[arg-type]
        sink.emit(_candidate())
        await asyncio.wait_for(sink._queue.join(), timeout=1.0)  # type: ignore[attr-defined]

    assert len(session.posts) == 1
    # Externally owned sessions are left open.
    assert session.closed is False


@pytest.mark.asyncio
async def test_webhook_worker_survives_failed_delivery() -> None:
    session = _FakeSession(status=503)

    async with WebhookSink(URL, session=session) as sink:  # type: ignore[arg-type]
        sink.emit(_candidate())
        sink.emit(_candidate())
        await asyncio.wait_for(sink._queue.join(), timeout=1.0)  # type: ignore[attr-defined]

    assert len(session.posts) == 2


@pytest.mark.asyncio
async def test_webhook_queue_full() -> None:
    async with WebhookSink(URL, session=_FakeSession(), max_queue=1) as sink:  # type: ignore[arg-type]
        sink.emit(_candidate())
        with pytest.raises(PublishError, match="queue full"):
            sink.emit(_candidate())
