"""Engine configuration for pyconverge."""

from __future__ import annotations

import dataclasses
import math
import os
from collections.abc import Callable
from typing import Any

from pyconverge import _constants as c
from pyconverge.exceptions import ConfigurationError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_float(value: str) -> float | None:
    if value.strip().lower() in {"", "none", "off"}:
        return None
    return float(value)


def _env_optional_int(value: str) -> int | None:
    if value.strip().lower() in {"", "none", "off"}:
        return None
    return int(value)


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Connection settings for the optional MQTT telemetry bridge.

    Parameters
    ----------
    enabled : bool
        Start the MQTT runtime when the engine starts.
    host : str
        Broker host name.
    port : int
        Broker port.
    keepalive : int
        MQTT keepalive in seconds.
    tls : bool
        Use TLS with the system trust store.
    username, password : str or None
        Optional broker credentials.
    client_id : str
        Client identifier; empty lets the broker assign one.
    telemetry_topic : str
        Topic (wildcards allowed) carrying agent telemetry JSON.
    candidate_topic : str or None
        Topic candidate events are published to. ``None`` disables publishing.
    """

    enabled: bool = False
    host: str = "localhost"
    port: int = 1883
    keepalive: int = 60
    tls: bool = False
    username: str | None = None
    password: str | None = None
    client_id: str = ""
    telemetry_topic: str = "converge/telemetry/#"
    candidate_topic: str | None = "converge/candidates"


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """Convergence engine tunables.

    Every field has a default; the configuration is validated on
    construction and raises :class:`ConfigurationError` when invalid.

    Parameters
    ----------
    horizon_sec : float
        Maximum look-ahead, in seconds, trajectories are projected over.
    approach_min_speed : float
        Minimum relative speed (m/s) for a pair to be considered approaching.
    meet_max_dist_m : float
        Maximum sampled separation (m) that still counts as a meeting.
    probability_floor : float
        Pair candidates below this probability are discarded.
    time_decay_sec : float
        Time constant of the exponential decay applied to far-future meetings.
    sample_count : int
        Number of evenly spaced instants sampled across the horizon.
    cluster_time_window_s, cluster_distance_m : float
        Pair candidates closer than both thresholds belong to one group.
    group_bonus : float
        Multiplier applied to the mean pair probability of a group.
    suppression_grid_m, suppression_time_bucket_s : float
        Quantization used when building suppression keys.
    ttl_padding_s, ttl_min_s, ttl_max_s : float
        Suppression TTL is ``clamp(time_to_meet + padding, min, max)``.
    tick_interval_s : float
        Interval between scheduled detection passes.
    latency_budget_s : float or None
        A pass slower than this skips emission. Defaults to the tick interval.
    emit_pairs : bool
        Consider standalone pair candidates for emission alongside groups.
    max_candidates_per_pass : int or None
        Keep only the best ranked candidates of each pass.
    max_agent_age_s : float or None
        Agents not updated for this long are evicted before each pass.
        ``None`` leaves eviction to the caller.
    max_agent_speed_mps : float or None
        Agents reporting a faster speed are left out of detection.
        ``None`` disables the filter.
    detect_on_update : bool
        Telemetry updates trigger a (coalesced) detection pass.
    webhook_url : str or None
        Downstream URL candidate events are POSTed to.
    webhook_timeout_s : float
        Total timeout of a single webhook delivery.
    mqtt : MqttSettings
        MQTT bridge settings.
    """

    horizon_sec: float = c.DEFAULT_HORIZON_SEC
    approach_min_speed: float = c.DEFAULT_APPROACH_MIN_SPEED
    meet_max_dist_m: float = c.DEFAULT_MEET_MAX_DIST_M
    probability_floor: float = c.DEFAULT_PROBABILITY_FLOOR
    time_decay_sec: float = c.DEFAULT_TIME_DECAY_SEC
    sample_count: int = c.DEFAULT_SAMPLE_COUNT
    cluster_time_window_s: float = c.DEFAULT_CLUSTER_TIME_WINDOW_S
    cluster_distance_m: float = c.DEFAULT_CLUSTER_DISTANCE_M
    group_bonus: float = c.DEFAULT_GROUP_BONUS
    suppression_grid_m: float = c.DEFAULT_SUPPRESSION_GRID_M
    suppression_time_bucket_s: float = c.DEFAULT_SUPPRESSION_TIME_BUCKET_S
    ttl_padding_s: float = c.DEFAULT_TTL_PADDING_S
    ttl_min_s: float = c.DEFAULT_TTL_MIN_S
    ttl_max_s: float = c.DEFAULT_TTL_MAX_S
    tick_interval_s: float = 2.0
    latency_budget_s: float | None = None
    emit_pairs: bool = True
    max_candidates_per_pass: int | None = None
    max_agent_age_s: float | None = 45.0
    max_agent_speed_mps: float | None = c.DEFAULT_MAX_AGENT_SPEED_MPS
    detect_on_update: bool = False
    webhook_url: str | None = None
    webhook_timeout_s: float = 5.0
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)

    def __post_init__(self) -> None:
        self._require_positive(
            "horizon_sec",
            "meet_max_dist_m",
            "time_decay_sec",
            "cluster_time_window_s",
            "cluster_distance_m",
            "suppression_grid_m",
            "suppression_time_bucket_s",
            "ttl_min_s",
            "ttl_max_s",
            "tick_interval_s",
            "webhook_timeout_s",
        )
        self._require_finite("approach_min_speed", "ttl_padding_s", "group_bonus", "probability_floor")
        if self.approach_min_speed < 0:
            raise ConfigurationError(f"approach_min_speed must be >= 0, got {self.approach_min_speed}")
        if not 0.0 <= self.probability_floor <= 1.0:
            raise ConfigurationError(f"probability_floor must be within [0, 1], got {self.probability_floor}")
        if self.sample_count < 1:
            raise ConfigurationError(f"sample_count must be >= 1, got {self.sample_count}")
        if self.group_bonus < 1.0:
            raise ConfigurationError(f"group_bonus must be >= 1, got {self.group_bonus}")
        if self.ttl_padding_s < 0:
            raise ConfigurationError(f"ttl_padding_s must be >= 0, got {self.ttl_padding_s}")
        if self.ttl_min_s > self.ttl_max_s:
            raise ConfigurationError(f"ttl_min_s ({self.ttl_min_s}) must not exceed ttl_max_s ({self.ttl_max_s})")
        if self.latency_budget_s is not None:
            self._require_positive("latency_budget_s")
        if self.max_agent_age_s is not None:
            self._require_positive("max_agent_age_s")
        if self.max_agent_speed_mps is not None:
            self._require_positive("max_agent_speed_mps")
        if self.max_candidates_per_pass is not None and self.max_candidates_per_pass < 1:
            raise ConfigurationError(f"max_candidates_per_pass must be >= 1, got {self.max_candidates_per_pass}")
        if self.mqtt.enabled and not 0 < self.mqtt.port < 65536:
            raise ConfigurationError(f"mqtt.port must be within 1..65535, got {self.mqtt.port}")

    def _require_positive(self, *names: str) -> None:
        for name in names:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a finite number > 0, got {value!r}")

    def _require_finite(self, *names: str) -> None:
        for name in names:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"{name} must be a finite number, got {value!r}")

    @property
    def effective_latency_budget_s(self) -> float:
        """Latency budget of a pass, falling back to the tick interval."""
        if self.latency_budget_s is not None:
            return self.latency_budget_s
        return self.tick_interval_s

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Create configuration from environment variables.

        Reads optional ``CONVERGE_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        EngineConfig
            Populated configuration.

        Raises
        ------
        ConfigurationError
            If a variable cannot be parsed or the result is invalid.
        """
        env = os.environ

        _ENV_CONFIG_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "CONVERGE_HORIZON_SEC": ("horizon_sec", float),
            "CONVERGE_APPROACH_MIN_SPEED": ("approach_min_speed", float),
            "CONVERGE_MEET_MAX_DIST_M": ("meet_max_dist_m", float),
            "CONVERGE_PROBABILITY_FLOOR": ("probability_floor", float),
            "CONVERGE_TIME_DECAY_SEC": ("time_decay_sec", float),
            "CONVERGE_CLUSTER_TIME_WINDOW_S": ("cluster_time_window_s", float),
            "CONVERGE_CLUSTER_DISTANCE_M": ("cluster_distance_m", float),
            "CONVERGE_SUPPRESSION_GRID_M": ("suppression_grid_m", float),
            "CONVERGE_SUPPRESSION_TIME_BUCKET_S": ("suppression_time_bucket_s", float),
            "CONVERGE_TTL_PADDING_S": ("ttl_padding_s", float),
            "CONVERGE_TTL_MIN_S": ("ttl_min_s", float),
            "CONVERGE_TTL_MAX_S": ("ttl_max_s", float),
            "CONVERGE_TICK_INTERVAL_S": ("tick_interval_s", float),
            "CONVERGE_LATENCY_BUDGET_S": ("latency_budget_s", _env_optional_float),
            "CONVERGE_MAX_CANDIDATES": ("max_candidates_per_pass", _env_optional_int),
            "CONVERGE_MAX_AGENT_AGE_S": ("max_agent_age_s", _env_optional_float),
            "CONVERGE_MAX_AGENT_SPEED_MPS": ("max_agent_speed_mps", _env_optional_float),
            "CONVERGE_WEBHOOK_URL": ("webhook_url", str),
            "CONVERGE_WEBHOOK_TIMEOUT_S": ("webhook_timeout_s", float),
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, (field_name, parse) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = parse(val)
            except ValueError as exc:
                raise ConfigurationError(f"{env_key}={val!r} is not valid: {exc}") from exc

        if "emit_pairs" not in overrides:
            config_kwargs["emit_pairs"] = _env_bool(env.get("CONVERGE_EMIT_PAIRS"), True)
        if "detect_on_update" not in overrides:
            config_kwargs["detect_on_update"] = _env_bool(env.get("CONVERGE_DETECT_ON_UPDATE"), False)

        # MQTT fields are nested; allow a dict override as well as a full MqttSettings.
        mqtt_kwargs: dict[str, Any] = {}
        _ENV_MQTT_MAP = {
            "CONVERGE_MQTT_HOST": "host",
            "CONVERGE_MQTT_USERNAME": "username",
            "CONVERGE_MQTT_PASSWORD": "password",
            "CONVERGE_MQTT_CLIENT_ID": "client_id",
            "CONVERGE_MQTT_TELEMETRY_TOPIC": "telemetry_topic",
            "CONVERGE_MQTT_CANDIDATE_TOPIC": "candidate_topic",
        }
        for env_key, field_name in _ENV_MQTT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                mqtt_kwargs[field_name] = val
        try:
            port_env = env.get("CONVERGE_MQTT_PORT")
            if port_env is not None:
                mqtt_kwargs["port"] = int(port_env)
            keepalive_env = env.get("CONVERGE_MQTT_KEEPALIVE")
            if keepalive_env is not None:
                mqtt_kwargs["keepalive"] = int(keepalive_env)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid MQTT port/keepalive: {exc}") from exc
        mqtt_kwargs["enabled"] = _env_bool(env.get("CONVERGE_MQTT_ENABLED"), False)
        mqtt_kwargs["tls"] = _env_bool(env.get("CONVERGE_MQTT_TLS"), False)

        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, dict):
            mqtt_kwargs.update(mqtt_overrides)
        elif isinstance(mqtt_overrides, MqttSettings):
            mqtt_kwargs = dataclasses.asdict(mqtt_overrides)
        config_kwargs["mqtt"] = MqttSettings(**mqtt_kwargs)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
