from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    return str(Path.cwd() / ".env")


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    value = float(raw)
    return value if value > 0 else None


@dataclass(frozen=True)
class Settings:
    api_prefix: str
    log_level: str

    history_capacity: int
    query_default_limit: int
    query_max_limit: int

    heartbeat_interval_sec: float
    missed_beats: int
    degraded_after_sec: Optional[float]
    auto_register_devices: bool

    liveness_sweep_interval_sec: float
    reconcile_interval_sec: float

    fanout_queue_max_size: int
    fanout_stall_timeout_sec: float

    dedup_ttl_sec: float
    dedup_max_size: int
    frame_max_bytes: int

    command_queue_max_size: int
    inference_mode: str

    mqtt_enabled: bool
    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_events_topic: str
    mqtt_commands_topic: str

    redis_mirror_enabled: bool
    redis_url: str
    redis_events_stream: str
    redis_stream_max_len: int

    @property
    def offline_after_sec(self) -> float:
        return self.heartbeat_interval_sec * self.missed_beats


def get_settings() -> Settings:
    # El .env se carga si existe, pero las variables reales tienen prioridad.
    env_file = os.getenv("EVENT_HUB_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        api_prefix=os.getenv("EVENT_HUB_API_PREFIX", "/api/v2").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        history_capacity=int(os.getenv("EVENT_HISTORY_CAPACITY", "500")),
        query_default_limit=int(os.getenv("EVENT_QUERY_DEFAULT_LIMIT", "100")),
        query_max_limit=int(os.getenv("EVENT_QUERY_MAX_LIMIT", "500")),
        heartbeat_interval_sec=float(os.getenv("DEVICE_HEARTBEAT_INTERVAL_SEC", "10")),
        missed_beats=int(os.getenv("DEVICE_MISSED_BEATS", "3")),
        degraded_after_sec=_optional_float("DEVICE_DEGRADED_AFTER_SEC"),
        auto_register_devices=env_flag("DEVICE_AUTO_REGISTER", "true"),
        liveness_sweep_interval_sec=float(os.getenv("LIVENESS_SWEEP_INTERVAL_SEC", "5")),
        reconcile_interval_sec=float(os.getenv("RECONCILE_INTERVAL_SEC", "60")),
        fanout_queue_max_size=int(os.getenv("FANOUT_QUEUE_MAX_SIZE", "256")),
        fanout_stall_timeout_sec=float(os.getenv("FANOUT_STALL_TIMEOUT_SEC", "60")),
        dedup_ttl_sec=float(os.getenv("DEDUP_TTL_SEC", "60")),
        dedup_max_size=int(os.getenv("DEDUP_MAX_SIZE", "10000")),
        frame_max_bytes=int(os.getenv("FRAME_MAX_BYTES", str(2 * 1024 * 1024))),
        command_queue_max_size=int(os.getenv("COMMAND_QUEUE_MAX_SIZE", "64")),
        inference_mode=os.getenv("CENTRAL_INFERENCE_MODE", "vlm"),
        mqtt_enabled=env_flag("FF_MQTT_INGEST_ENABLED"),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_events_topic=os.getenv("MQTT_EVENTS_TOPIC", "edge/+/events"),
        mqtt_commands_topic=os.getenv("MQTT_COMMANDS_TOPIC", "edge/{device_id}/commands"),
        redis_mirror_enabled=env_flag("FF_REDIS_MIRROR_ENABLED"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_events_stream=os.getenv("REDIS_EVENTS_STREAM", "events:ingested"),
        redis_stream_max_len=int(os.getenv("REDIS_STREAM_MAX_LEN", "10000")),
    )
