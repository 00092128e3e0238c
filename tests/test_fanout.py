"""Tests del FanOutHub y de la BackpressureQueue subyacente."""

import asyncio
import threading

import pytest

from conftest import FakeMonotonic, make_settings, raw_event
from event_hub.container import EventHub
from event_hub.core.domain import EventType, Severity
from event_hub.fanout import (
    BackpressureConfig,
    BackpressureQueue,
    FanOutConfig,
    FanOutHub,
    SubscriptionFilter,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def small_hub(monotonic) -> FanOutHub:
    return FanOutHub(FanOutConfig(queue_max_size=3, stall_timeout_sec=10), time_fn=monotonic)


def ingest_many(hub, count, **extra):
    return [hub.pipeline.ingest(raw_event(description=f"e{i}", **extra)).event for i in range(count)]


def drain(subscriber):
    messages = []
    while True:
        message = subscriber.poll()
        if message is None:
            return messages
        messages.append(message)


# =============================================================================
# BACKPRESSURE QUEUE
# =============================================================================

class TestBackpressureQueue:
    def test_drop_oldest_when_full(self):
        dropped = []
        queue = BackpressureQueue(BackpressureConfig(max_queue_size=2, drop_oldest=True), on_drop=dropped.append)

        assert queue.put(1) is True
        assert queue.put(2) is True
        assert queue.put(3) is True

        assert queue.drain() == [2, 3]
        assert dropped == [1]
        assert queue.dropped == 1

    def test_reject_newest_when_configured(self):
        queue = BackpressureQueue(BackpressureConfig(max_queue_size=2, drop_oldest=False))
        queue.put("a")
        queue.put("b")

        assert queue.put("c") is False
        assert queue.drain() == ["a", "b"]

    def test_get_times_out_on_empty_queue(self):
        queue = BackpressureQueue(BackpressureConfig(max_queue_size=2))
        assert queue.get(timeout=0.01) is None

    def test_drain_respects_max_items(self):
        queue = BackpressureQueue(BackpressureConfig(max_queue_size=10))
        for i in range(5):
            queue.put(i)
        assert queue.drain(max_items=2) == [0, 1]
        assert queue.size == 3

    def test_stats(self):
        queue = BackpressureQueue(BackpressureConfig(max_queue_size=4))
        queue.put("x")
        stats = queue.stats
        assert stats.enqueued == 1
        assert stats.current_size == 1
        assert stats.to_dict()["utilization_pct"] == 25.0


# =============================================================================
# ORDEN Y AISLAMIENTO
# =============================================================================

class TestDelivery:
    def test_subscriber_receives_events_in_ingestion_order(self, hub):
        subscriber = hub.fanout.subscribe()
        events = ingest_many(hub, 5)

        assert [m["id"] for m in drain(subscriber)] == [e.id for e in events]

    def test_only_events_after_subscribe_are_delivered(self, hub):
        ingest_many(hub, 2)
        subscriber = hub.fanout.subscribe()
        later = ingest_many(hub, 1)
        assert [m["id"] for m in drain(subscriber)] == [later[0].id]

    def test_slow_subscriber_drops_only_its_own_oldest(self, clock, monotonic):
        hub = EventHub.build(make_settings(fanout_queue_max_size=3), clock=clock, time_fn=monotonic)
        slow = hub.fanout.subscribe()
        fast = hub.fanout.subscribe()

        received_fast = []
        events = []
        for i in range(6):
            events.append(hub.pipeline.ingest(raw_event(description=f"e{i}")).event)
            received_fast.extend(drain(fast))

        assert [m["id"] for m in received_fast] == [e.id for e in events]
        assert [m["id"] for m in drain(slow)] == [e.id for e in events[-3:]]
        assert slow.dropped == 3
        assert fast.dropped == 0

    def test_broadcast_serializes_once_per_event(self, small_hub, hub):
        a = small_hub.subscribe()
        b = small_hub.subscribe()
        event = hub.pipeline.ingest(raw_event()).event

        assert small_hub.broadcast(event) == 2
        assert a.poll() is b.poll()

    def test_concurrent_ingestion_preserves_order_per_subscriber(self, hub):
        subscriber = hub.fanout.subscribe()

        def worker(n):
            for i in range(40):
                hub.pipeline.ingest(raw_event(device_id=f"edge-{n}", description=str(i)))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        seqs = [int(m["id"].split("-")[1]) for m in drain(subscriber)]
        assert len(seqs) == 160
        assert seqs == sorted(seqs)
        # cada dispositivo también conserva su FIFO
        per_device = {}
        for event in hub.history.snapshot():
            per_device.setdefault(event.device_id, []).append(int(event.description))
        for values in per_device.values():
            assert values == sorted(values)


# =============================================================================
# FILTROS
# =============================================================================

class TestFilters:
    def test_parse_normalizes_case(self):
        f = SubscriptionFilter.parse(device_id="edge-1", severity="CRITICAL", event_type="detection_alert")
        assert f.severity == Severity.CRITICAL
        assert f.type == EventType.DETECTION_ALERT

    def test_parse_rejects_unknown_values(self):
        with pytest.raises(ValueError):
            SubscriptionFilter.parse(severity="urgent")

    def test_filtered_subscriber_only_sees_matches(self, hub):
        critical_only = hub.fanout.subscribe(SubscriptionFilter(severity=Severity.CRITICAL))
        edge_2 = hub.fanout.subscribe(SubscriptionFilter(device_id="edge-2"))

        hub.pipeline.ingest(raw_event(device_id="edge-1", severity="critical"))
        hub.pipeline.ingest(raw_event(device_id="edge-2", severity="info"))

        assert [m["deviceId"] for m in drain(critical_only)] == ["edge-1"]
        assert [m["severity"] for m in drain(edge_2)] == ["info"]


# =============================================================================
# CICLO DE VIDA
# =============================================================================

class TestLifecycle:
    def test_unsubscribe_is_idempotent(self, small_hub):
        subscriber = small_hub.subscribe()
        assert small_hub.unsubscribe(subscriber) is True
        assert small_hub.unsubscribe(subscriber) is False
        assert len(small_hub) == 0
        assert subscriber.closed is True

    def test_closed_subscriber_gets_nothing(self, small_hub, hub):
        subscriber = small_hub.subscribe()
        small_hub.unsubscribe(subscriber)
        event = hub.pipeline.ingest(raw_event()).event
        assert small_hub.broadcast(event) == 0
        assert subscriber.poll() is None

    def test_stalled_subscriber_is_evicted(self, small_hub, hub, monotonic):
        stalled = small_hub.subscribe()
        healthy = small_hub.subscribe()
        event = hub.pipeline.ingest(raw_event()).event
        small_hub.broadcast(event)
        healthy.poll()

        monotonic.advance(11)
        evicted = small_hub.sweep_stalled()

        assert evicted == [stalled]
        assert small_hub.subscribers() == [healthy]
        assert small_hub.stats["evicted"] == 1

    def test_idle_subscriber_with_empty_queue_is_kept(self, small_hub, monotonic):
        small_hub.subscribe()
        monotonic.advance(3600)
        assert small_hub.sweep_stalled() == []

    def test_stall_measured_from_first_pending_message(self, small_hub, hub, monotonic):
        subscriber = small_hub.subscribe()
        monotonic.advance(3600)
        small_hub.broadcast(hub.pipeline.ingest(raw_event()).event)
        monotonic.advance(5)

        assert subscriber.stalled_for() == 5
        assert small_hub.sweep_stalled() == []


# =============================================================================
# CONSUMO ASYNC
# =============================================================================

class TestAsyncConsumer:
    @pytest.mark.asyncio
    async def test_next_wakes_on_broadcast_from_another_thread(self, hub):
        subscriber = hub.fanout.subscribe()
        waiter = asyncio.create_task(subscriber.next(timeout=2))
        await asyncio.sleep(0)

        await asyncio.to_thread(hub.pipeline.ingest, raw_event(severity="critical"))

        message = await waiter
        assert message["severity"] == "critical"

    @pytest.mark.asyncio
    async def test_next_returns_none_on_timeout(self, small_hub):
        subscriber = small_hub.subscribe()
        assert await subscriber.next(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_close_releases_waiting_consumer(self, small_hub):
        subscriber = small_hub.subscribe()
        waiter = asyncio.create_task(subscriber.next(timeout=2))
        await asyncio.sleep(0)

        small_hub.unsubscribe(subscriber)
        assert await waiter is None

    def test_next_requires_event_loop(self, small_hub):
        subscriber = small_hub.subscribe()
        with pytest.raises(RuntimeError):
            asyncio.run(subscriber.next(timeout=0.01))
