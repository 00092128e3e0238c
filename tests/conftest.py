"""Fixtures compartidos: relojes falsos y un hub completo sin transportes."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hub_common.config import get_settings
from event_hub.container import EventHub


class FakeClock:
    """Reloj de pared controlable (datetime UTC)."""

    def __init__(self, start: datetime = datetime(2026, 1, 31, 8, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeMonotonic:
    """Reloj monótono controlable (segundos float)."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> float:
        self.value += seconds
        return self.value


def make_settings(**overrides):
    base = replace(
        get_settings(),
        api_prefix="/api/v2",
        history_capacity=500,
        query_default_limit=100,
        query_max_limit=500,
        heartbeat_interval_sec=10,
        missed_beats=3,
        degraded_after_sec=None,
        auto_register_devices=True,
        fanout_queue_max_size=256,
        fanout_stall_timeout_sec=60,
        dedup_ttl_sec=60,
        mqtt_enabled=False,
        redis_mirror_enabled=False,
    )
    return replace(base, **overrides)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def hub(clock, monotonic) -> EventHub:
    return EventHub.build(make_settings(), clock=clock, time_fn=monotonic)


def raw_event(device_id="edge-1", type="DETECTION_ALERT", severity="info", **extra):
    event = {"deviceId": device_id, "type": type, "severity": severity}
    event.update(extra)
    return event
