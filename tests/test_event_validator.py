"""Tests de validación de eventos y deduplicación por msgId."""

from datetime import datetime, timezone

import pytest

from conftest import FakeMonotonic
from event_hub.core.domain import EventType, Severity
from event_hub.core.validation import DeduplicationCache, validate_event


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def detection_payload():
    return {
        "deviceId": "edge-1",
        "deviceName": "Edge-RK3588-Gate-01",
        "type": "DETECTION_ALERT",
        "severity": "critical",
        "description": "Persona en zona restringida",
        "timestamp": "2026-01-31T08:00:00.123456Z",
        "metadata": {"traceId": "trace-1001", "frameId": 4821},
        "metrics": {"fps": 24.5, "npuUsage": 61.0},
        "boxes": [
            {"classId": 0, "className": "person", "confidence": 0.91,
             "xMin": 0.1, "yMin": 0.2, "xMax": 0.4, "yMax": 0.8},
        ],
        "msgId": "edge-1:4821",
    }


# =============================================================================
# PAYLOADS VÁLIDOS
# =============================================================================

class TestValidPayloads:
    def test_detection_alert(self, detection_payload):
        result = validate_event(detection_payload)

        assert result.valid is True
        assert result.event_type == EventType.DETECTION_ALERT
        assert result.payload.severity == Severity.CRITICAL
        assert result.payload.timestamp == datetime(2026, 1, 31, 8, 0, 0, 123456, tzinfo=timezone.utc)
        assert result.payload.metadata["frameId"] == "4821"
        assert result.payload.metrics.to_partial() == {"fps": 24.5, "npuUsage": 61.0}

    def test_enum_case_is_normalized(self):
        result = validate_event({"deviceId": "edge-1", "type": "health_update", "severity": "WARNING"})
        assert result.valid is True
        assert result.event_type == EventType.HEALTH_UPDATE
        assert result.payload.severity == Severity.WARNING

    def test_severity_defaults_to_info(self):
        result = validate_event({"deviceId": "edge-1", "type": "SYSTEM_ERROR"})
        assert result.payload.severity == Severity.INFO

    def test_snake_case_keys_accepted_with_warning(self):
        result = validate_event({"device_id": "edge-1", "event_type": "HEALTH_UPDATE"})
        assert result.valid is True
        assert result.payload.deviceId == "edge-1"
        assert any("device_id" in w for w in result.warnings)

    def test_malformed_timestamp_is_not_an_error(self):
        result = validate_event({"deviceId": "edge-1", "type": "SYSTEM_ERROR", "timestamp": "yesterday"})
        assert result.valid is True
        assert result.payload.timestamp is None
        assert result.warnings

    def test_epoch_millis_timestamp(self):
        result = validate_event({"deviceId": "edge-1", "type": "SYSTEM_ERROR", "timestamp": 1769846400000})
        assert result.payload.timestamp == datetime(2026, 1, 31, 8, 0, 0, tzinfo=timezone.utc)

    def test_model_loaded_takes_model_from_metadata(self):
        result = validate_event({
            "deviceId": "edge-1",
            "type": "MODEL_LOADED",
            "metadata": {"model": "yolov8n-rknn", "version": "2.1"},
        })
        assert result.valid is True
        assert result.payload.modelId == "yolov8n-rknn"
        assert result.payload.version == "2.1"


# =============================================================================
# RECHAZOS
# =============================================================================

class TestRejections:
    def test_unknown_severity(self):
        result = validate_event({"deviceId": "edge-1", "type": "DETECTION_ALERT", "severity": "urgent"})
        assert result.valid is False
        assert result.reason == "unknown_severity"
        assert "severity" in result.details

    def test_unknown_type(self):
        result = validate_event({"deviceId": "edge-1", "type": "TELEPORT"})
        assert result.valid is False
        assert result.reason == "unknown_type"

    def test_missing_type(self):
        result = validate_event({"deviceId": "edge-1"})
        assert result.valid is False
        assert result.reason == "unknown_type"

    def test_missing_device_id(self):
        result = validate_event({"type": "HEALTH_UPDATE"})
        assert result.valid is False
        assert result.reason == "malformed"
        assert "deviceId" in result.details

    def test_blank_device_id(self):
        assert validate_event({"deviceId": "   ", "type": "HEALTH_UPDATE"}).valid is False

    def test_non_object_payload(self):
        result = validate_event(["not", "an", "object"])
        assert result.valid is False
        assert result.reason == "malformed"

    def test_inverted_bounding_box(self, detection_payload):
        detection_payload["boxes"][0]["xMin"] = 0.9
        assert validate_event(detection_payload).valid is False

    def test_nan_metric_rejected(self):
        result = validate_event({"deviceId": "edge-1", "type": "HEALTH_UPDATE", "metrics": {"fps": float("nan")}})
        assert result.valid is False

    def test_model_loaded_without_model_id(self):
        assert validate_event({"deviceId": "edge-1", "type": "MODEL_LOADED"}).valid is False

    def test_frame_too_large(self, detection_payload):
        detection_payload["frameData"] = "A" * 101
        result = validate_event(detection_payload, frame_max_bytes=100)
        assert result.valid is False
        assert result.reason == "frame_too_large"


# =============================================================================
# DEDUPLICACIÓN
# =============================================================================

class TestDeduplication:
    def test_key_is_scoped_per_device(self):
        assert DeduplicationCache.generate_key("edge-1", "m1") != DeduplicationCache.generate_key("edge-2", "m1")
        assert len(DeduplicationCache.generate_key("edge-1", "m1")) == 16

    def test_seen_key_returns_original(self):
        cache = DeduplicationCache(ttl_seconds=60)
        key = cache.generate_key("edge-1", "m1")
        assert cache.lookup(key) is None

        cache.mark_seen(key, "event-1")
        assert cache.lookup(key) == "event-1"

    def test_entry_expires_after_ttl(self):
        now = FakeMonotonic()
        cache = DeduplicationCache(ttl_seconds=60, time_fn=now)
        key = cache.generate_key("edge-1", "m1")
        cache.mark_seen(key, "event-1")

        now.advance(61)
        assert cache.lookup(key) is None

    def test_size_is_bounded(self):
        cache = DeduplicationCache(ttl_seconds=60, max_size=10)
        for i in range(25):
            cache.mark_seen(cache.generate_key("edge-1", str(i)), i)
        assert cache.stats["size"] <= 10
