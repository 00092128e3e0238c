"""Métricas Prometheus del hub.

Se exponen en GET /metrics. El registry por defecto de prometheus_client
es global al proceso, así que las métricas se definen una sola vez a
nivel de módulo.
"""

from __future__ import annotations

from typing import Iterable

from prometheus_client import Counter, Gauge, Histogram

from ..core.domain.device import ConnectionStatus, Device

EVENTS_INGESTED = Counter(
    "event_hub_events_ingested_total",
    "Events accepted by the ingestion pipeline",
    ["type", "severity"],
)
EVENTS_REJECTED = Counter(
    "event_hub_events_rejected_total",
    "Events rejected by the ingestion pipeline",
    ["reason"],  # malformed, unknown_type, unknown_severity, frame_too_large, unknown_device
)
EVENTS_DEDUPLICATED = Counter(
    "event_hub_events_deduplicated_total",
    "Events acknowledged as duplicates of a previously seen msgId",
)
INGEST_LATENCY = Histogram(
    "event_hub_ingest_seconds",
    "Time spent in IngestionPipeline.ingest",
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

FANOUT_DELIVERIES = Counter(
    "event_hub_fanout_enqueued_total",
    "Messages enqueued on live subscriber queues",
)
FANOUT_DROPS = Counter(
    "event_hub_fanout_dropped_total",
    "Messages dropped from lagging subscriber queues (drop-oldest)",
)
FANOUT_EVICTIONS = Counter(
    "event_hub_fanout_evicted_total",
    "Subscribers evicted for not draining their queue",
)
LIVE_SUBSCRIBERS = Gauge(
    "event_hub_live_subscribers",
    "Currently connected live subscribers",
)

DEVICES_BY_STATUS = Gauge(
    "event_hub_devices",
    "Registered devices by connection status",
    ["status"],
)

COMMANDS_DISPATCHED = Counter(
    "event_hub_commands_total",
    "Device commands by outcome",
    ["type", "outcome"],  # queued, published, rejected, publish_failed
)

AGGREGATION_DRIFT = Counter(
    "event_hub_aggregation_drift_corrections_total",
    "Reconciliation runs that found incremental counter drift",
)

SINK_FAILURES = Counter(
    "event_hub_sink_failures_total",
    "Failures writing accepted events to an external sink",
    ["sink"],
)


def refresh_device_gauges(devices: Iterable[Device]) -> None:
    counts = {status: 0 for status in ConnectionStatus}
    for device in devices:
        counts[device.status] += 1
    for status, count in counts.items():
        DEVICES_BY_STATUS.labels(status=status.value).set(count)
