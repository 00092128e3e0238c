"""Tests de carga de configuración desde el entorno."""

import pytest

from hub_common.config import env_flag, get_settings
from event_hub.core.registry import LivenessPolicy
from event_hub.fanout import BackpressureConfig, FanOutConfig


@pytest.fixture(autouse=True)
def no_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("EVENT_HUB_ENV_FILE", str(tmp_path / "missing.env"))


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("EVENT_HISTORY_CAPACITY", "DEVICE_HEARTBEAT_INTERVAL_SEC", "DEVICE_MISSED_BEATS",
                     "DEVICE_DEGRADED_AFTER_SEC", "FF_MQTT_INGEST_ENABLED", "EVENT_HUB_API_PREFIX"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()
        assert settings.history_capacity == 500
        assert settings.offline_after_sec == 30
        assert settings.degraded_after_sec is None
        assert settings.mqtt_enabled is False
        assert settings.api_prefix == "/api/v2"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("EVENT_HISTORY_CAPACITY", "50")
        monkeypatch.setenv("DEVICE_HEARTBEAT_INTERVAL_SEC", "5")
        monkeypatch.setenv("DEVICE_MISSED_BEATS", "4")
        monkeypatch.setenv("DEVICE_DEGRADED_AFTER_SEC", "8")
        monkeypatch.setenv("EVENT_HUB_API_PREFIX", "/api/v3/")

        settings = get_settings()
        assert settings.history_capacity == 50
        assert settings.offline_after_sec == 20
        assert settings.degraded_after_sec == 8
        assert settings.api_prefix == "/api/v3"

    def test_env_file_does_not_override_real_env(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("EVENT_QUERY_MAX_LIMIT=42\nCENTRAL_INFERENCE_MODE=yolo\n")
        monkeypatch.setenv("EVENT_HUB_ENV_FILE", str(env_file))
        monkeypatch.setenv("CENTRAL_INFERENCE_MODE", "vlm")
        # registra la variable en monkeypatch para que el teardown borre lo que cargue dotenv
        monkeypatch.setenv("EVENT_QUERY_MAX_LIMIT", "0")
        monkeypatch.delenv("EVENT_QUERY_MAX_LIMIT")

        settings = get_settings()
        assert settings.query_max_limit == 42
        assert settings.inference_mode == "vlm"

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("ON", True), ("no", False), ("", False)])
    def test_env_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("SOME_FLAG", raw)
        assert env_flag("SOME_FLAG") is expected


class TestComponentConfigs:
    def test_liveness_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("DEVICE_HEARTBEAT_INTERVAL_SEC", "2")
        monkeypatch.setenv("DEVICE_MISSED_BEATS", "5")
        monkeypatch.setenv("DEVICE_DEGRADED_AFTER_SEC", "0")
        policy = LivenessPolicy.from_env()
        assert policy.offline_after_sec == 10
        assert policy.degraded_after_sec is None

    def test_fanout_config_from_env(self, monkeypatch):
        monkeypatch.setenv("FANOUT_QUEUE_MAX_SIZE", "8")
        monkeypatch.setenv("FANOUT_STALL_TIMEOUT_SEC", "3")
        assert FanOutConfig.from_env() == FanOutConfig(queue_max_size=8, stall_timeout_sec=3)

    def test_backpressure_config_from_env(self, monkeypatch):
        monkeypatch.setenv("FANOUT_QUEUE_MAX_SIZE", "12")
        monkeypatch.setenv("FANOUT_DROP_OLDEST", "false")
        config = BackpressureConfig.from_env()
        assert config.max_queue_size == 12
        assert config.drop_oldest is False
