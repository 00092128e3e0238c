"""Tests del buffer acotado de historial."""

from datetime import timedelta

import pytest

from conftest import FakeClock
from event_hub.core.domain import DetectionEvent, EventType, Severity, SystemErrorPayload
from event_hub.core.history import EventHistory


def make_event(seq: int, clock: FakeClock, severity=Severity.INFO, offset_sec: float = 0) -> DetectionEvent:
    return DetectionEvent(
        id=f"event-{seq}",
        seq=seq,
        device_id="edge-1",
        device_name="edge-1",
        type=EventType.SYSTEM_ERROR,
        severity=severity,
        description="",
        timestamp=clock.now + timedelta(seconds=offset_sec),
        received_at=clock.now,
        payload=SystemErrorPayload(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestEventHistory:
    def test_never_exceeds_capacity_and_evicts_fifo(self, clock):
        history = EventHistory(capacity=3)
        evicted = [history.append(make_event(i, clock)) for i in range(1, 6)]

        assert len(history) == 3
        assert [e.id for e in history.snapshot()] == ["event-3", "event-4", "event-5"]
        assert [e.id for e in evicted if e is not None] == ["event-1", "event-2"]
        assert history.evicted_total == 2

    def test_recent_is_reverse_arrival_order(self, clock):
        history = EventHistory(capacity=10)
        for i in range(1, 5):
            history.append(make_event(i, clock))

        assert [e.seq for e in history.recent(4)] == [4, 3, 2, 1]

    def test_recent_filters_before_truncating(self, clock):
        history = EventHistory(capacity=10)
        for i in range(1, 7):
            sev = Severity.CRITICAL if i % 2 == 0 else Severity.INFO
            history.append(make_event(i, clock, severity=sev))

        result = history.recent(2, lambda e: e.severity == Severity.CRITICAL)
        assert [e.seq for e in result] == [6, 4]

    def test_since_uses_embedded_timestamp(self, clock):
        history = EventHistory(capacity=10)
        history.append(make_event(1, clock, offset_sec=-7200))
        history.append(make_event(2, clock, offset_sec=-60))

        result = history.since(clock.now - timedelta(hours=1))
        assert [e.id for e in result] == ["event-2"]

    def test_find_by_id(self, clock):
        history = EventHistory(capacity=10)
        history.append(make_event(1, clock))
        assert history.find("event-1").seq == 1
        assert history.find("event-99") is None

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            EventHistory(capacity=0)
