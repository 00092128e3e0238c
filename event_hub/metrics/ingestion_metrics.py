"""Ingestion timing diagnostics.

Per-device view of how events arrive:
- Lag (received_at - embedded timestamp)
- Delta between consecutive embedded timestamps
- Out-of-order embedded timestamps (accepted, only counted)

The pipeline never reorders or rejects late events; these numbers only
tell operators when a device's clock or link is misbehaving.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from statistics import mean, stdev
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def _summary(samples: List[float]) -> dict:
    return {
        "avg_ms": round(mean(samples), 2) if samples else None,
        "min_ms": round(min(samples), 2) if samples else None,
        "max_ms": round(max(samples), 2) if samples else None,
        "std_ms": round(stdev(samples), 2) if len(samples) > 1 else None,
        "samples": len(samples),
    }


@dataclass
class DeviceTimingStats:
    """Timing statistics for a single device."""

    device_id: str

    last_event_ts: Optional[float] = None
    last_received_ts: Optional[float] = None

    total_events: int = 0
    out_of_order_count: int = 0

    # event_ts[n] - event_ts[n-1]
    delta_samples: deque = field(default_factory=lambda: deque(maxlen=100))
    # received_ts - event_ts
    lag_samples: deque = field(default_factory=lambda: deque(maxlen=100))

    def record_event(self, event_ts: float, received_ts: float) -> dict:
        """Record one accepted event and return its timing analysis."""
        lag_ms = (received_ts - event_ts) * 1000
        self.lag_samples.append(lag_ms)

        result = {
            "device_id": self.device_id,
            "lag_ms": lag_ms,
            "delta_ms": None,
            "out_of_order": False,
        }

        if self.last_event_ts is not None:
            delta_ms = (event_ts - self.last_event_ts) * 1000
            result["delta_ms"] = delta_ms
            if delta_ms < 0:
                result["out_of_order"] = True
                self.out_of_order_count += 1
                logger.debug(
                    "OUT_OF_ORDER device_id=%s behind_ms=%.2f",
                    self.device_id, -delta_ms,
                )
            else:
                self.delta_samples.append(delta_ms)

        # Only move forward: a late event doesn't rewind the reference.
        if self.last_event_ts is None or event_ts > self.last_event_ts:
            self.last_event_ts = event_ts
        self.last_received_ts = received_ts
        self.total_events += 1
        return result

    def get_stats(self) -> dict:
        return {
            "device_id": self.device_id,
            "total_events": self.total_events,
            "out_of_order_count": self.out_of_order_count,
            "delta": _summary(list(self.delta_samples)),
            "lag": _summary(list(self.lag_samples)),
        }


@dataclass
class IngestionMetrics:
    """Aggregated ingestion metrics across all devices."""

    timestamp: str
    uptime_seconds: float
    total_events: int
    total_devices: int
    total_out_of_order: int

    avg_lag_ms: Optional[float]
    max_lag_ms: Optional[float]

    health: str  # "PASS" | "WARN" | "FAIL"
    health_reasons: List[str]

    devices: Dict[str, dict]


class IngestionMetricsService:
    """Thread-safe tracker of timing metrics for all devices (one per hub).

    Usage:
        service = IngestionMetricsService()
        service.record_event("edge-1", event_ts=..., received_ts=...)
        report = service.get_diagnostics()
    """

    def __init__(
        self,
        max_acceptable_lag_ms: Optional[float] = None,
        max_out_of_order_rate: Optional[float] = None,
    ):
        self._devices: Dict[str, DeviceTimingStats] = {}
        self._start_time = time.time()
        self._total_events = 0
        self._data_lock = threading.Lock()

        # Edge links are slower than a LAN sensor bus; defaults are generous.
        self._max_acceptable_lag_ms = (
            max_acceptable_lag_ms
            if max_acceptable_lag_ms is not None
            else float(os.getenv("INGEST_MAX_LAG_MS", "2000"))
        )
        self._max_out_of_order_rate = (
            max_out_of_order_rate
            if max_out_of_order_rate is not None
            else float(os.getenv("INGEST_MAX_OUT_OF_ORDER_RATE", "0.05"))
        )

    def record_event(self, device_id: str, event_ts: datetime, received_ts: datetime) -> dict:
        with self._data_lock:
            stats = self._devices.get(device_id)
            if stats is None:
                stats = self._devices[device_id] = DeviceTimingStats(device_id=device_id)
            result = stats.record_event(event_ts.timestamp(), received_ts.timestamp())
            self._total_events += 1

        if result["lag_ms"] > self._max_acceptable_lag_ms:
            logger.warning(
                "HIGH_LAG device_id=%s lag_ms=%.2f threshold_ms=%.2f",
                device_id, result["lag_ms"], self._max_acceptable_lag_ms,
            )
        return result

    def get_device_stats(self, device_id: str) -> Optional[dict]:
        with self._data_lock:
            stats = self._devices.get(device_id)
            return stats.get_stats() if stats is not None else None

    def get_metrics(self) -> IngestionMetrics:
        with self._data_lock:
            devices_data = {}
            all_lag: List[float] = []
            total_out_of_order = 0
            for device_id, stats in self._devices.items():
                devices_data[device_id] = stats.get_stats()
                total_out_of_order += stats.out_of_order_count
                all_lag.extend(stats.lag_samples)
            total_events = self._total_events
            uptime = time.time() - self._start_time

        avg_lag = round(mean(all_lag), 2) if all_lag else None
        max_lag = round(max(all_lag), 2) if all_lag else None

        health = "PASS"
        reasons: List[str] = []
        if max_lag is not None and max_lag > self._max_acceptable_lag_ms:
            health = "WARN"
            reasons.append(f"Max lag {max_lag}ms exceeds threshold {self._max_acceptable_lag_ms}ms")
        if total_events > 0:
            rate = total_out_of_order / total_events
            if rate > self._max_out_of_order_rate:
                health = "FAIL"
                reasons.append(
                    f"Out-of-order rate {rate:.2%} exceeds threshold {self._max_out_of_order_rate:.2%}"
                )
        if not reasons:
            reasons.append("All metrics within acceptable thresholds")

        return IngestionMetrics(
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime_seconds=round(uptime, 2),
            total_events=total_events,
            total_devices=len(devices_data),
            total_out_of_order=total_out_of_order,
            avg_lag_ms=avg_lag,
            max_lag_ms=max_lag,
            health=health,
            health_reasons=reasons,
            devices=devices_data,
        )

    def get_diagnostics(self, device_id: Optional[str] = None) -> dict:
        """Diagnostics report for the API endpoint."""
        metrics = self.get_metrics()
        result = {
            "timestamp": metrics.timestamp,
            "uptime_seconds": metrics.uptime_seconds,
            "summary": {
                "total_events": metrics.total_events,
                "total_devices": metrics.total_devices,
                "total_out_of_order": metrics.total_out_of_order,
                "avg_lag_ms": metrics.avg_lag_ms,
                "max_lag_ms": metrics.max_lag_ms,
            },
            "health": metrics.health,
            "health_reasons": metrics.health_reasons,
        }
        if device_id is not None:
            result["device"] = metrics.devices.get(device_id)
            if result["device"] is None:
                result["error"] = f"Device {device_id} not found"
        else:
            result["devices"] = metrics.devices
        return result
