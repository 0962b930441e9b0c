"""Convergence scheduler/publisher.

One detection pass reads the agent store, computes pairwise and group
candidates, filters them through the suppression cache and emits the
survivors to the registered sinks. Passes are serialized: a pass
requested while another is running is coalesced into it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pyconverge.config import EngineConfig
from pyconverge.detection.group import cluster_pair_candidates, pair_convergences
from pyconverge.detection.ranking import rank_candidates
from pyconverge.exceptions import DetectionTimeout, InvalidAgentState
from pyconverge.ingestion.mqtt import TelemetryMessage, TelemetryMqttRuntime
from pyconverge.ingestion.telemetry import agent_from_payload, iter_payloads
from pyconverge.magnetism import Magnetism, NeutralMagnetism
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import ConvergenceCandidate
from pyconverge.sinks import CandidateSink, MqttCandidateSink, WebhookSink
from pyconverge.state.store import AgentStore
from pyconverge.suppression.cache import InMemoryTtlCache
from pyconverge.suppression.suppressor import SuppressionCache

_logger = logging.getLogger(__name__)


class EngineState(StrEnum):
    IDLE = "idle"
    DETECTING = "detecting"


@dataclass(slots=True)
class PassReport:
    """Statistics of a single detection pass."""

    agents: int = 0
    evicted: int = 0
    pairs: int = 0
    groups: int = 0
    considered: int = 0
    suppressed: int = 0
    emitted: int = 0
    elapsed_s: float = 0.0
    skipped: bool = False


@dataclass(slots=True)
class _Detection:
    pairs: list[ConvergenceCandidate]
    groups: list[ConvergenceCandidate]
    candidates: list[ConvergenceCandidate]


class ConvergenceEngine:
    """Real-time convergence prediction engine.

    Usage::

        engine = ConvergenceEngine(EngineConfig(), sinks=[CallbackSink(print)])
        engine.upsert({"id": "a", "lat": 34.0, "lng": -118.49, "vx": 1.0, "vy": 0.0, "confidence": 0.9})
        emitted = engine.run_pass()

    or, driven by its own timer (plus MQTT/webhook when configured)::

        async with ConvergenceEngine(config) as engine:
            ...
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        store: AgentStore | None = None,
        suppression: SuppressionCache | None = None,
        magnetism: Magnetism | None = None,
        sinks: Iterable[CandidateSink] = (),
        clock: Callable[[], float] = time.monotonic,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._config = config or EngineConfig()
        self._store = store if store is not None else AgentStore(clock=clock)
        self._suppression = (
            suppression
            if suppression is not None
            else SuppressionCache.from_config(self._config, InMemoryTtlCache(clock=clock))
        )
        self._magnetism: Magnetism = magnetism if magnetism is not None else NeutralMagnetism()
        self._sinks: list[CandidateSink] = list(sinks)
        self._clock = clock
        self._timer = timer

        self._state = EngineState.IDLE
        self._last_report = PassReport()
        self._coalesced_passes = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._pending_pass: asyncio.Handle | None = None
        self._mqtt_runtime: TelemetryMqttRuntime | None = None
        self._owned_sinks: list[CandidateSink] = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> AgentStore:
        return self._store

    @property
    def suppression(self) -> SuppressionCache:
        return self._suppression

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def last_report(self) -> PassReport:
        return self._last_report

    @property
    def coalesced_passes(self) -> int:
        """Number of pass requests dropped because a pass was already running."""
        return self._coalesced_passes

    def add_sink(self, sink: CandidateSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: CandidateSink) -> None:
        with contextlib.suppress(ValueError):
            self._sinks.remove(sink)

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def upsert(self, update: Agent | Mapping[str, Any]) -> bool:
        """Store an agent snapshot or raw telemetry payload.

        Invalid updates are logged and dropped; the previous snapshot
        for the agent (if any) is kept. Returns whether the update was
        accepted.
        """
        accepted = self._store_update(update)
        if accepted and self._config.detect_on_update:
            self.request_detection()
        return accepted

    def upsert_many(self, updates: Iterable[Agent | Mapping[str, Any]]) -> int:
        """Store a batch of updates; returns how many were accepted.

        With ``detect_on_update`` a single pass is requested once the
        whole batch has been applied.
        """
        accepted = sum(1 for update in updates if self._store_update(update))
        if accepted and self._config.detect_on_update:
            self.request_detection()
        return accepted

    def _store_update(self, update: Agent | Mapping[str, Any]) -> bool:
        try:
            if isinstance(update, Agent):
                agent = update
            else:
                previous_id = update.get("id") if isinstance(update, Mapping) else None
                previous = self._store.get(str(previous_id).strip()) if previous_id is not None else None
                agent = agent_from_payload(update, previous)
            self._store.upsert(agent)
        except InvalidAgentState as exc:
            _logger.warning("Dropping agent update: %s", exc)
            return False
        return True

    def remove(self, agent_id: str) -> bool:
        return self._store.remove(agent_id)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _plausible(self, agents: list[Agent]) -> list[Agent]:
        limit = self._config.max_agent_speed_mps
        if limit is None:
            return agents
        kept = [agent for agent in agents if math.hypot(agent.vx, agent.vy) <= limit]
        if len(kept) != len(agents):
            _logger.debug("Ignoring %d agents faster than %.1f m/s", len(agents) - len(kept), limit)
        return kept

    def _detect(self, agents: list[Agent]) -> _Detection:
        config = self._config
        pairs = pair_convergences(self._plausible(agents), magnetism=self._magnetism, config=config)
        groups = cluster_pair_candidates(
            pairs,
            time_window_s=config.cluster_time_window_s,
            distance_m=config.cluster_distance_m,
            group_bonus=config.group_bonus,
            magnetism=self._magnetism,
        )
        candidates = groups + pairs if config.emit_pairs else list(groups)
        ranked = rank_candidates(candidates, config.max_candidates_per_pass)
        return _Detection(pairs=pairs, groups=groups, candidates=ranked)

    def detect(self) -> list[ConvergenceCandidate]:
        """Compute candidates for the current snapshot without emitting them."""
        return self._detect(self._store.all()).candidates

    def _check_latency(self, elapsed: float) -> None:
        budget = self._config.effective_latency_budget_s
        if elapsed > budget:
            raise DetectionTimeout(elapsed, budget)

    def _emit(self, candidate: ConvergenceCandidate) -> None:
        for sink in list(self._sinks):
            try:
                sink.emit(candidate)
            except Exception as exc:
                _logger.warning("Sink %s failed for candidate %s: %s", type(sink).__name__, candidate.id, exc)
                _logger.debug("Sink failure traceback", exc_info=True)

    def _publish(self, candidates: list[ConvergenceCandidate], report: PassReport) -> list[ConvergenceCandidate]:
        emitted: list[ConvergenceCandidate] = []
        now = self._clock()
        for candidate in candidates:
            key = self._suppression.build_key(candidate, now)
            if self._suppression.should_suppress(key):
                report.suppressed += 1
                continue
            self._suppression.record(key, self._suppression.ttl_for(candidate))
            emitted.append(candidate)
            self._emit(candidate)
        report.emitted = len(emitted)
        return emitted

    def run_pass(self) -> list[ConvergenceCandidate]:
        """Run one detection pass and return the emitted candidates.

        A call made while a pass is already running is coalesced and
        returns an empty list. A pass exceeding the latency budget emits
        nothing; the next pass proceeds normally.
        """
        if self._state is EngineState.DETECTING:
            self._coalesced_passes += 1
            _logger.debug("Detection already running; coalescing request")
            return []

        self._state = EngineState.DETECTING
        report = PassReport()
        started = self._timer()
        try:
            if self._config.max_agent_age_s is not None:
                report.evicted = len(self._store.evict_stale(self._config.max_agent_age_s))
            agents = self._store.all()
            report.agents = len(agents)

            try:
                detection = self._detect(agents)
            except Exception:
                _logger.exception("Detection pass failed; skipping emission")
                report.skipped = True
                return []
            report.pairs = len(detection.pairs)
            report.groups = len(detection.groups)
            report.considered = len(detection.candidates)

            try:
                self._check_latency(self._timer() - started)
            except DetectionTimeout as exc:
                _logger.warning("%s; skipping emission for this tick", exc)
                report.skipped = True
                return []

            return self._publish(detection.candidates, report)
        finally:
            self._suppression.prune()
            report.elapsed_s = self._timer() - started
            self._last_report = report
            self._state = EngineState.IDLE
            _logger.debug(
                "Detection pass agents=%d evicted=%d pairs=%d groups=%d suppressed=%d emitted=%d "
                "elapsed=%.4fs skipped=%s",
                report.agents,
                report.evicted,
                report.pairs,
                report.groups,
                report.suppressed,
                report.emitted,
                report.elapsed_s,
                report.skipped,
            )

    def request_detection(self) -> None:
        """Ask for a pass soon; bursts of requests collapse into one pass.

        Without a running engine loop the pass runs immediately.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            self.run_pass()
            return
        if self._pending_pass is not None:
            return
        self._pending_pass = loop.call_soon(self._run_pending_pass)

    def _run_pending_pass(self) -> None:
        self._pending_pass = None
        self.run_pass()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ConvergenceEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None

    async def start(self) -> None:
        """Start the tick loop plus the configured webhook and MQTT bridges."""
        if self._tick_task is not None:
            return
        self._loop = asyncio.get_running_loop()

        if self._config.webhook_url:
            webhook = WebhookSink(self._config.webhook_url, timeout_s=self._config.webhook_timeout_s)
            await webhook.start()
            self._owned_sinks.append(webhook)
            self.add_sink(webhook)

        if self._config.mqtt.enabled:
            await self._start_mqtt()

        self._tick_task = asyncio.create_task(self._tick_loop(), name="pyconverge-tick")

    async def stop(self) -> None:
        task = self._tick_task
        self._tick_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._pending_pass is not None:
            self._pending_pass.cancel()
            self._pending_pass = None

        await self._stop_mqtt()

        for sink in self._owned_sinks:
            self.remove_sink(sink)
            if isinstance(sink, WebhookSink):
                await sink.close()
        self._owned_sinks.clear()
        self._loop = None

    async def _tick_loop(self) -> None:
        interval = self._config.tick_interval_s
        while True:
            self.run_pass()
            await asyncio.sleep(interval)

    async def _start_mqtt(self) -> None:
        loop = asyncio.get_running_loop()
        runtime = TelemetryMqttRuntime(loop=loop, on_message=self._on_mqtt_message, logger=_logger)
        try:
            await loop.run_in_executor(None, runtime.start, self._config.mqtt)
        except Exception:
            _logger.warning("MQTT runtime start failed; continuing without telemetry bridge", exc_info=True)
            return
        self._mqtt_runtime = runtime
        topic = self._config.mqtt.candidate_topic
        if topic:
            sink = MqttCandidateSink(runtime, topic)
            self._owned_sinks.append(sink)
            self.add_sink(sink)

    async def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is None:
            return
        try:
            await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)

    def _on_mqtt_message(self, message: TelemetryMessage) -> None:
        payloads = iter_payloads(message.payload)
        accepted = self.upsert_many(payloads)
        _logger.debug("MQTT telemetry topic=%s accepted=%d/%d", message.topic, accepted, len(payloads))
