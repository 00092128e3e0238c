"""Transporte MQTT: ingesta de eventos y canal de comandos.

Flujo:
  MQTT topic edge/{device_id}/events
  → MQTTEventReceiver (este archivo, hilo de red de paho)
  → IngestionPipeline.ingest

Los mensajes se procesan en el callback, uno a uno, así que el orden
por conexión se conserva. Los comandos salen por
edge/{device_id}/commands.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import orjson
import paho.mqtt.client as mqtt

from ..core.pipeline.ingestion import IngestionPipeline

logger = logging.getLogger(__name__)


def device_id_from_topic(topic: str, pattern: str) -> Optional[str]:
    """Extrae el segmento que ocupa '+' en el patrón (edge/+/events -> edge-1)."""
    topic_parts = topic.split("/")
    pattern_parts = pattern.split("/")
    if len(topic_parts) != len(pattern_parts):
        return None
    for t, p in zip(topic_parts, pattern_parts):
        if p == "+":
            return t or None
    return None


class MQTTEventReceiver:
    """Receptor MQTT que alimenta el pipeline de ingesta y publica comandos."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        events_topic: str = "edge/+/events",
        commands_topic: str = "edge/{device_id}/commands",
        client_id: str = "event-hub",
    ):
        self._pipeline = pipeline
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.events_topic = events_topic
        self.commands_topic = commands_topic
        self.client_id = f"{client_id}-{int(time.time())}"

        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._running = False

        self._messages_received = 0
        self._messages_processed = 0
        self._messages_failed = 0
        self._commands_published = 0
        self._last_message_at: float = 0
        self._stats_lock = threading.Lock()

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        if self.username and self.password:
            client.username_pw_set(self.username, self.password)
        # paho reintenta solo; acotamos el backoff de reconexión
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        return client

    def start(self, wait_sec: float = 5.0) -> bool:
        """Conecta en segundo plano. Retorna True si conectó dentro de wait_sec."""
        self._client = self._build_client()
        logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
        self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
        self._client.loop_start()
        self._running = True

        if self._connected.wait(wait_sec):
            logger.info("[MQTT] Started successfully")
            return True
        logger.warning("[MQTT] Not connected after %.1fs; paho keeps retrying", wait_sec)
        return False

    def stop(self) -> None:
        self._running = False
        if self._client is not None:
            self._client.loop_stop()
            self._client.disconnect()
        self._connected.clear()
        logger.info("[MQTT] Stopped. %s", self.stats)

    # -- callbacks (hilo de red de paho) -----------------------------------

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            self._connected.set()
            client.subscribe(self.events_topic, qos=1)
            logger.info("[MQTT] Connected, subscribed to %s", self.events_topic)
        else:
            self._connected.clear()
            logger.error("[MQTT] Connection failed: rc=%s", rc)

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        self._connected.clear()
        logger.warning("[MQTT] Disconnected (rc=%s)", rc)

    def _on_message(self, client, userdata, msg):
        with self._stats_lock:
            self._messages_received += 1
            self._last_message_at = time.time()

        try:
            data = orjson.loads(msg.payload)
        except orjson.JSONDecodeError as e:
            logger.warning("[MQTT] Invalid JSON: %s (topic=%s)", e, msg.topic)
            self._count(failed=True)
            return

        if isinstance(data, dict):
            topic_device = device_id_from_topic(msg.topic, self.events_topic)
            payload_device = data.get("deviceId") or data.get("device_id")
            if topic_device and payload_device and payload_device != topic_device:
                logger.warning(
                    "[MQTT] deviceId %s does not match topic %s; using topic",
                    payload_device, msg.topic,
                )
            if topic_device:
                data.pop("device_id", None)
                data["deviceId"] = topic_device

        try:
            result = self._pipeline.ingest(data)
        except Exception as e:
            # el hilo de paho no debe morir por un evento
            logger.exception("[MQTT] Processing error topic=%s: %s", msg.topic, e)
            self._count(failed=True)
            return
        self._count(failed=not result.ok)

    def _count(self, failed: bool) -> None:
        with self._stats_lock:
            if failed:
                self._messages_failed += 1
            else:
                self._messages_processed += 1

    # -- comandos ----------------------------------------------------------

    def publish_command(self, device_id: str, command: dict) -> bool:
        """CommandPublisher: publica el comando en el topic del dispositivo."""
        if self._client is None or not self._connected.is_set():
            logger.warning("[MQTT] Not connected; command for %s not published", device_id)
            return False
        topic = self.commands_topic.format(device_id=device_id)
        info = self._client.publish(topic, orjson.dumps(command), qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("[MQTT] Publish to %s failed rc=%s", topic, info.rc)
            return False
        with self._stats_lock:
            self._commands_published += 1
        return True

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            return {
                "connected": self._connected.is_set(),
                "running": self._running,
                "broker": f"{self.broker_host}:{self.broker_port}",
                "topic": self.events_topic,
                "messages_received": self._messages_received,
                "messages_processed": self._messages_processed,
                "messages_failed": self._messages_failed,
                "commands_published": self._commands_published,
                "last_message_at": self._last_message_at,
            }
