"""Tests de transportes: MQTT (paho) y mirror a Redis Streams.

Los clientes externos se reemplazan con MagicMock; no hace falta broker
ni servidor Redis.
"""

import threading
from unittest.mock import MagicMock, patch

import orjson
import paho.mqtt.client as mqtt
import pytest
import redis

from conftest import raw_event
from event_hub.mqtt import MQTTEventReceiver
from event_hub.mqtt.receiver import device_id_from_topic
from event_hub.redis import RedisConnection, RedisMirror, RedisPublisher
from event_hub.redis.publisher import to_stream_fields


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def receiver(hub) -> MQTTEventReceiver:
    return MQTTEventReceiver(hub.pipeline, events_topic="edge/+/events")


@pytest.fixture
def redis_client() -> MagicMock:
    client = MagicMock()
    client.ping.return_value = True
    return client


@pytest.fixture
def connection(redis_client) -> RedisConnection:
    conn = RedisConnection("redis://user:pw@redis.local:6379/0")
    with patch("event_hub.redis.connection.redis.Redis.from_url", return_value=redis_client):
        assert conn.connect() is True
    return conn


def mqtt_message(topic, payload):
    msg = MagicMock()
    msg.topic = topic
    msg.payload = payload if isinstance(payload, bytes) else orjson.dumps(payload)
    return msg


# =============================================================================
# MQTT: INGESTA
# =============================================================================

class TestTopicParsing:
    def test_device_from_wildcard_segment(self):
        assert device_id_from_topic("edge/edge-7/events", "edge/+/events") == "edge-7"

    def test_mismatched_depth(self):
        assert device_id_from_topic("edge/events", "edge/+/events") is None

    def test_empty_segment(self):
        assert device_id_from_topic("edge//events", "edge/+/events") is None


class TestMQTTIngest:
    def test_message_reaches_pipeline(self, receiver, hub):
        receiver._on_message(None, None, mqtt_message("edge/edge-7/events", raw_event(device_id="edge-7")))

        assert len(hub.history) == 1
        assert hub.registry.get("edge-7").is_connected
        assert receiver.stats["messages_processed"] == 1

    def test_topic_device_wins_over_payload(self, receiver, hub):
        receiver._on_message(None, None, mqtt_message("edge/edge-7/events", raw_event(device_id="spoofed")))

        assert hub.history.snapshot()[0].device_id == "edge-7"
        assert hub.registry.find("spoofed") is None

    def test_same_contract_as_http(self, receiver, hub):
        receiver._on_message(None, None, mqtt_message("edge/edge-1/events", raw_event(severity="urgent")))

        assert len(hub.history) == 0
        assert receiver.stats["messages_failed"] == 1

    def test_invalid_json_is_counted_not_raised(self, receiver, hub):
        receiver._on_message(None, None, mqtt_message("edge/edge-1/events", b"{not json"))

        assert receiver.stats["messages_failed"] == 1
        assert len(hub.history) == 0

    def test_duplicate_msg_id_over_mqtt(self, receiver, hub):
        payload = raw_event(msgId="edge-1:1")
        receiver._on_message(None, None, mqtt_message("edge/edge-1/events", payload))
        receiver._on_message(None, None, mqtt_message("edge/edge-1/events", payload))
        assert len(hub.history) == 1

    def test_pipeline_crash_does_not_kill_callback(self, receiver):
        receiver._pipeline = MagicMock()
        receiver._pipeline.ingest.side_effect = RuntimeError("boom")

        receiver._on_message(None, None, mqtt_message("edge/edge-1/events", raw_event()))
        assert receiver.stats["messages_failed"] == 1


class TestMQTTConnection:
    def test_on_connect_subscribes(self, receiver):
        client = MagicMock()
        receiver._on_connect(client, None, {}, 0)

        client.subscribe.assert_called_once_with("edge/+/events", qos=1)
        assert receiver.is_connected is True

    def test_failed_connect_and_disconnect(self, receiver):
        receiver._on_connect(MagicMock(), None, {}, 5)
        assert receiver.is_connected is False

        receiver._on_connect(MagicMock(), None, {}, 0)
        receiver._on_disconnect(MagicMock(), None, {}, 7)
        assert receiver.is_connected is False

    def test_start_connects_in_background(self, receiver):
        with patch("event_hub.mqtt.receiver.mqtt.Client") as client_cls:
            assert receiver.start(wait_sec=0) is False

        client = client_cls.return_value
        client.connect_async.assert_called_once_with("localhost", 1883, keepalive=60)
        client.loop_start.assert_called_once()
        client.reconnect_delay_set.assert_called_once_with(min_delay=1, max_delay=30)

        receiver.stop()
        client.loop_stop.assert_called_once()


# =============================================================================
# MQTT: COMANDOS
# =============================================================================

class TestMQTTCommands:
    def test_publish_command_to_device_topic(self, receiver):
        client = MagicMock()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        receiver._client = client
        receiver._connected.set()

        assert receiver.publish_command("edge-3", {"type": "SET_FPS"}) is True
        topic, payload = client.publish.call_args[0]
        assert topic == "edge/edge-3/commands"
        assert orjson.loads(payload) == {"type": "SET_FPS"}
        assert client.publish.call_args[1] == {"qos": 1}

    def test_publish_while_disconnected(self, receiver):
        assert receiver.publish_command("edge-3", {"type": "SET_FPS"}) is False

    def test_publish_error_code(self, receiver):
        client = MagicMock()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)
        receiver._client = client
        receiver._connected.set()
        assert receiver.publish_command("edge-3", {"type": "SET_FPS"}) is False

    def test_dispatcher_uses_mqtt_in_push_mode(self, receiver, hub):
        hub.pipeline.ingest(raw_event(device_id="edge-3", type="HEALTH_UPDATE"))
        client = MagicMock()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        receiver._client = client
        receiver._connected.set()
        hub.commands.set_publisher(receiver.publish_command)

        result = hub.commands.dispatch("SHUTDOWN", device_id="edge-3")

        assert result.delivered == ["edge-3"]
        assert hub.commands.pending("edge-3") == 0
        client.publish.assert_called_once()


# =============================================================================
# REDIS
# =============================================================================

class TestRedisConnection:
    def test_safe_url_hides_credentials(self):
        assert RedisConnection("redis://user:pw@redis.local:6379/0").safe_url == "redis.local:6379/0"

    def test_connect_failure(self):
        failing = MagicMock()
        failing.ping.side_effect = redis.ConnectionError("refused")
        conn = RedisConnection("redis://localhost:6379/0")
        with patch("event_hub.redis.connection.redis.Redis.from_url", return_value=failing):
            assert conn.connect() is False
        assert conn.is_connected is False

    def test_close_releases_client(self, connection, redis_client):
        connection.close()
        redis_client.close.assert_called_once()
        assert connection.client is None
        assert connection.is_connected is False


class TestRedisPublisher:
    def test_xadd_with_approximate_maxlen(self, connection, redis_client, hub):
        event = hub.pipeline.ingest(raw_event(frameData="aGVsbG8=")).event
        publisher = RedisPublisher(connection, "events:test", max_len=100)

        assert publisher.publish(event) is True
        stream, fields = redis_client.xadd.call_args[0]
        assert stream == "events:test"
        assert redis_client.xadd.call_args[1] == {"maxlen": 100, "approximate": True}
        assert fields["id"] == event.id
        assert "frameData" not in orjson.loads(fields["event"])

    def test_stream_fields_are_flat_strings(self, hub):
        event = hub.pipeline.ingest(raw_event(severity="critical")).event
        fields = to_stream_fields(event)
        assert fields["seq"] == str(event.seq)
        assert fields["severity"] == "critical"

    def test_redis_error_marks_connection_broken(self, connection, redis_client, hub):
        redis_client.xadd.side_effect = redis.ConnectionError("gone")
        event = hub.pipeline.ingest(raw_event()).event

        assert RedisPublisher(connection).publish(event) is False
        assert connection.is_connected is False


class TestRedisMirror:
    def test_sink_only_enqueues(self, connection, redis_client, hub):
        mirror = RedisMirror(RedisPublisher(connection), connection)
        hub.pipeline.add_sink(mirror)

        hub.pipeline.ingest(raw_event())
        redis_client.xadd.assert_not_called()
        assert mirror.stats["queue_depth"] == 1

    def test_worker_publishes_in_ingestion_order(self, connection, redis_client, hub):
        published = []
        done = threading.Event()

        def xadd(stream, fields, **kwargs):
            published.append(fields["id"])
            if len(published) == 5:
                done.set()

        redis_client.xadd.side_effect = xadd
        mirror = RedisMirror(RedisPublisher(connection), connection)
        hub.pipeline.add_sink(mirror)
        mirror.start()
        try:
            ids = [hub.pipeline.ingest(raw_event()).event.id for _ in range(5)]
            assert done.wait(5)
        finally:
            mirror.stop()

        assert published == ids
        assert mirror.stats["published"] == 5
        assert mirror.is_running is False

    def test_full_queue_drops_oldest(self, connection, hub):
        mirror = RedisMirror(RedisPublisher(connection), connection, max_queue_size=2)
        for _ in range(3):
            mirror(hub.pipeline.ingest(raw_event()).event)
        assert mirror.stats["dropped"] == 1
        assert mirror.stats["queue_depth"] == 2

    def test_reconnect_is_throttled(self, hub):
        conn = MagicMock()
        conn.is_connected = False
        conn.connect.return_value = False
        mirror = RedisMirror(RedisPublisher(conn), conn, reconnect_interval_sec=60)
        event = hub.pipeline.ingest(raw_event()).event

        assert mirror.publish_one(event) is False
        assert mirror.publish_one(event) is False
        conn.connect.assert_called_once()
        assert mirror.stats["failed"] == 2
