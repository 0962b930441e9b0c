from __future__ import annotations

import asyncio

import pytest

from pyconverge.config import EngineConfig
from pyconverge.engine import ConvergenceEngine, EngineState
from pyconverge.geo import offset
from pyconverge.ingestion.mqtt import TelemetryMessage
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import CandidateType, ConvergenceCandidate
from pyconverge.sinks import CallbackSink


ORIGIN = (34.0, -118.49)


class _SteppingTimer:
    """perf_counter stand-in advancing by a fixed step on every read."""

    def __init__(self, step: float) -> None:
        self._now = 0.0
        self._step = step

    def __call__(self) -> float:
        self._now += self._step
        return self._now


def _walker(agent_id: str, east_m: float, vx: float) -> Agent:
    lat, lng = offset(ORIGIN, east_m, 0.0)
    return Agent(id=agent_id, lat=lat, lng=lng, vx=vx, vy=0.0, confidence=0.9)


def _engine(
    clock, config: EngineConfig | None = None, **kwargs
) -> tuple[ConvergenceEngine, list[ConvergenceCandidate]]:
    received: list[ConvergenceCandidate] = []
    engine = ConvergenceEngine(config, sinks=[CallbackSink(received.append)], clock=clock, **kwargs)
    return engine, received


def test_pass_emits_group_then_pairs(clock, converging_trio: list[Agent]) -> None:
    engine, received = _engine(clock)
    engine.upsert_many(converging_trio)

    emitted = engine.run_pass()

    assert emitted == received
    assert [c.type for c in emitted] == [CandidateType.GROUP] + [CandidateType.PAIR] * 3
    assert emitted[0].id == "group:a,b,c"
    report = engine.last_report
    assert (report.agents, report.pairs, report.groups, report.emitted, report.suppressed) == (3, 3, 1, 4, 0)
    assert report.skipped is False
    assert engine.state is EngineState.IDLE


def test_repeat_pass_is_suppressed_until_ttl_expires(clock, converging_trio: list[Agent]) -> None:
    engine, received = _engine(clock)
    engine.upsert_many(converging_trio)

    assert len(engine.run_pass()) == 4
    assert engine.run_pass() == []
    assert engine.last_report.suppressed == 4

    # Meeting in 20 s -> suppressed for 35 s.
    clock.advance(36.0)
    assert len(engine.run_pass()) == 4
    assert len(received) == 8


def test_groups_only_when_pairs_disabled(clock, converging_trio: list[Agent]) -> None:
    engine, _ = _engine(clock, EngineConfig(emit_pairs=False))
    engine.upsert_many(converging_trio)

    assert [c.id for c in engine.run_pass()] == ["group:a,b,c"]


def test_max_candidates_per_pass(clock, converging_trio: list[Agent]) -> None:
    engine, _ = _engine(clock, EngineConfig(max_candidates_per_pass=1))
    engine.upsert_many(converging_trio)

    assert [c.id for c in engine.run_pass()] == ["group:a,b,c"]


def test_detect_does_not_emit_or_record(clock, converging_trio: list[Agent]) -> None:
    engine, received = _engine(clock)
    engine.upsert_many(converging_trio)

    assert len(engine.detect()) == 4
    assert received == []
    assert len(engine.run_pass()) == 4


def test_latency_overrun_skips_emission(clock, converging_trio: list[Agent]) -> None:
    engine, received = _engine(clock, EngineConfig(latency_budget_s=1.0), timer=_SteppingTimer(5.0))
    engine.upsert_many(converging_trio)

    assert engine.run_pass() == []
    assert received == []
    assert engine.last_report.skipped is True
    assert engine.last_report.pairs == 3

    # Nothing was recorded, so a timely pass emits everything.
    engine._timer = _SteppingTimer(0.001)  # type: ignore[attr-defined]
    assert len(engine.run_pass()) == 4


def test_reentrant_pass_is_coalesced(clock, converging_trio: list[Agent]) -> None:
    nested: list[list[ConvergenceCandidate]] = []
    engine = ConvergenceEngine(clock=clock)
    engine.add_sink(CallbackSink(lambda _c: nested.append(engine.run_pass())))
    engine.upsert_many(converging_trio)

    assert len(engine.run_pass()) == 4
    assert nested == [[], [], [], []]
    assert engine.coalesced_passes == 4


def test_failing_sink_does_not_stop_other_sinks(clock, converging_trio: list[Agent]) -> None:
    def _explode(_candidate: ConvergenceCandidate) -> None:
        raise RuntimeError("downstream unavailable")

    received: list[ConvergenceCandidate] = []
    engine = ConvergenceEngine(sinks=[CallbackSink(_explode), CallbackSink(received.append)], clock=clock)
    engine.upsert_many(converging_trio)

    assert len(engine.run_pass()) == 4
    assert len(received) == 4


def test_invalid_update_is_dropped_and_previous_kept(clock) -> None:
    engine, _ = _engine(clock)

    assert engine.upsert({"id": "a", "lat": 34.0, "lng": -118.49, "vx": 1.0, "vy": 0.0, "confidence": 0.9}) is True
    assert engine.upsert({"id": "a", "lat": float("nan"), "lng": -118.49, "confidence": 0.9}) is False
    assert engine.upsert({"id": "b", "lat": 34.0}) is False

    stored = engine.store.get("a")
    assert stored is not None
    assert stored.lat == 34.0
    assert "b" not in engine.store


def test_stale_agents_are_evicted_before_detection(clock, converging_trio: list[Agent]) -> None:
    engine, _ = _engine(clock)
    engine.upsert_many(converging_trio)

    clock.advance(46.0)

    assert engine.run_pass() == []
    assert engine.last_report.evicted == 3
    assert len(engine.store) == 0


def test_remove_agent(clock, converging_trio: list[Agent]) -> None:
    engine, _ = _engine(clock)
    engine.upsert_many(converging_trio)

    assert engine.remove("c") is True
    assert [c.id for c in engine.run_pass()] == ["pair:a:b"]


def test_batch_update_runs_one_pass(
    clock, converging_trio: list[Agent], monkeypatch: pytest.MonkeyPatch
) -> None:
    engine, received = _engine(clock, EngineConfig(detect_on_update=True))
    passes: list[int] = []
    run_pass = engine.run_pass

    def _counting_pass() -> list[ConvergenceCandidate]:
        passes.append(len(engine.store))
        return run_pass()

    monkeypatch.setattr(engine, "run_pass", _counting_pass)

    engine.upsert_many(converging_trio)

    assert passes == [3]
    assert [c.id for c in received] == ["group:a,b,c", "pair:a:b", "pair:a:c", "pair:b:c"]


def test_single_update_without_loop_runs_immediately(clock, head_on_pair: list[Agent]) -> None:
    engine, received = _engine(clock, EngineConfig(detect_on_update=True))

    engine.upsert(head_on_pair[0])
    assert received == []
    engine.upsert(head_on_pair[1])

    assert [c.id for c in received] == ["pair:a:b"]


def test_steady_approach_is_announced_once(clock) -> None:
    clock.now = 990.0
    engine, received = _engine(clock)

    # 80 m apart closing at 2 m/s, fresh telemetry every 2 s tick.
    for tick in range(10):
        remaining = 40.0 - 2.0 * tick
        engine.upsert_many([_walker("a", -remaining, 1.0), _walker("b", remaining, -1.0)])
        engine.run_pass()
        clock.advance(2.0)

    assert [c.id for c in received] == ["pair:a:b"]


def test_implausibly_fast_agents_are_ignored(clock) -> None:
    pool = [_walker("g", -4000.0, 200.0), _walker("s", 0.0, 0.0), _walker("a", -20.0, 1.0)]
    engine, _ = _engine(clock)
    engine.upsert_many(pool)

    assert [c.id for c in engine.run_pass()] == ["pair:a:s"]
    assert engine.last_report.agents == 3

    unfiltered, _ = _engine(clock, EngineConfig(max_agent_speed_mps=None))
    unfiltered.upsert_many(pool)
    unfiltered.run_pass()
    assert unfiltered.last_report.pairs == 3


def test_mqtt_message_feeds_store(clock) -> None:
    engine, _ = _engine(clock)
    payload = {
        "agents": [
            {"id": "a", "lat": 34.0, "lng": -118.49, "confidence": 0.9},
            {"id": "b", "lat": 34.001, "lng": -118.49, "confidence": 0.8},
            {"id": "c", "lat": "north"},
        ]
    }

    engine._on_mqtt_message(TelemetryMessage(topic="converge/telemetry/x", payload=payload))  # type: ignore[attr-defined]

    assert sorted(a.id for a in engine.store.all()) == ["a", "b"]


@pytest.mark.asyncio
async def test_started_engine_coalesces_update_bursts(converging_trio: list[Agent]) -> None:
    received: list[ConvergenceCandidate] = []
    config = EngineConfig(tick_interval_s=60.0, detect_on_update=True)

    async with ConvergenceEngine(config, sinks=[CallbackSink(received.append)]) as engine:
        assert engine.is_running
        engine.upsert_many(converging_trio)
        for _ in range(5):
            await asyncio.sleep(0)

        assert sorted(c.id for c in received) == ["group:a,b,c", "pair:a:b", "pair:a:c", "pair:b:c"]

    assert not engine.is_running


@pytest.mark.asyncio
async def test_tick_loop_runs_passes() -> None:
    received: list[ConvergenceCandidate] = []
    engine = ConvergenceEngine(EngineConfig(tick_interval_s=0.01), sinks=[CallbackSink(received.append)])
    engine.upsert({"id": "a", "lat": 34.0, "lng": -118.49, "confidence": 0.9})

    await engine.start()
    await asyncio.sleep(0.05)
    await engine.stop()

    assert engine.last_report.agents == 1
    assert received == []
