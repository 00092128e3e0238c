"""Ensamblado de componentes del hub.

Un único lock reentrante ("store lock") lo comparten registry,
historial, agregador, pipeline y queries: cada ingesta aplica sus
efectos en una sola sección crítica y cada consulta lee un snapshot
consistente.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from hub_common.config import Settings, get_settings

from .commands import CommandDispatcher, ModelCatalog
from .core.aggregation import AggregationEngine
from .core.clock import Clock, utcnow
from .core.history import EventHistory
from .core.pipeline import IngestionPipeline
from .core.registry import DeviceRegistry, LivenessPolicy
from .core.validation import DeduplicationCache
from .fanout import FanOutConfig, FanOutHub
from .metrics import prometheus as prom
from .metrics.ingestion_metrics import IngestionMetricsService
from .mqtt import MQTTEventReceiver
from .queries import QueryService
from .redis import RedisConnection, RedisMirror, RedisPublisher
from .scheduler import TaskScheduler

logger = logging.getLogger(__name__)


@dataclass
class EventHub:
    settings: Settings
    lock: threading.RLock
    registry: DeviceRegistry
    history: EventHistory
    aggregator: AggregationEngine
    fanout: FanOutHub
    pipeline: IngestionPipeline
    queries: QueryService
    commands: CommandDispatcher
    models: ModelCatalog
    timing: IngestionMetricsService
    scheduler: TaskScheduler = field(default_factory=TaskScheduler)
    mqtt: Optional[MQTTEventReceiver] = None
    redis_mirror: Optional[RedisMirror] = None

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        *,
        clock: Clock = utcnow,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> "EventHub":
        settings = settings or get_settings()
        lock = threading.RLock()

        registry = DeviceRegistry(
            LivenessPolicy(
                offline_after_sec=settings.offline_after_sec,
                degraded_after_sec=settings.degraded_after_sec,
            ),
            lock=lock,
            clock=clock,
        )
        history = EventHistory(settings.history_capacity, lock=lock)
        aggregator = AggregationEngine(
            registry,
            history,
            inference_mode=settings.inference_mode,
            lock=lock,
            time_fn=time_fn,
        )
        fanout = FanOutHub(
            FanOutConfig(
                queue_max_size=settings.fanout_queue_max_size,
                stall_timeout_sec=settings.fanout_stall_timeout_sec,
            ),
            time_fn=time_fn,
            on_drop=lambda _sub: prom.FANOUT_DROPS.inc(),
        )
        timing = IngestionMetricsService()
        pipeline = IngestionPipeline(
            registry,
            history,
            aggregator,
            fanout,
            lock=lock,
            clock=clock,
            dedup=DeduplicationCache(settings.dedup_ttl_sec, settings.dedup_max_size, time_fn=time_fn),
            auto_register=settings.auto_register_devices,
            frame_max_bytes=settings.frame_max_bytes,
            timing=timing,
        )
        queries = QueryService(
            registry,
            history,
            aggregator,
            lock=lock,
            clock=clock,
            default_limit=settings.query_default_limit,
            max_limit=settings.query_max_limit,
        )
        commands = CommandDispatcher(
            registry,
            queue_max_size=settings.command_queue_max_size,
            clock=clock,
        )
        models = ModelCatalog(commands)
        pipeline.add_sink(models)

        hub = cls(
            settings=settings,
            lock=lock,
            registry=registry,
            history=history,
            aggregator=aggregator,
            fanout=fanout,
            pipeline=pipeline,
            queries=queries,
            commands=commands,
            models=models,
            timing=timing,
        )
        hub._schedule_tasks()
        return hub

    def _schedule_tasks(self) -> None:
        s = self.settings
        self.scheduler.add("liveness-sweep", s.liveness_sweep_interval_sec, self.sweep_liveness)
        self.scheduler.add("reconcile", s.reconcile_interval_sec, self.reconcile)
        self.scheduler.add("fanout-sweep", max(1.0, s.fanout_stall_timeout_sec / 4), self.sweep_subscribers)

    # -- tareas periódicas -------------------------------------------------

    def sweep_liveness(self) -> None:
        self.registry.sweep_stale()
        prom.refresh_device_gauges(self.registry.snapshot())

    def reconcile(self) -> None:
        if self.aggregator.reconcile():
            prom.AGGREGATION_DRIFT.inc()

    def sweep_subscribers(self) -> None:
        evicted = self.fanout.sweep_stalled()
        if evicted:
            prom.FANOUT_EVICTIONS.inc(len(evicted))
        prom.LIVE_SUBSCRIBERS.set(len(self.fanout))

    # -- ciclo de vida -----------------------------------------------------

    def start_transports(self) -> None:
        """Arranca los transportes opcionales (hilos). Fallos no impiden servir HTTP."""
        s = self.settings
        if s.redis_mirror_enabled:
            connection = RedisConnection(s.redis_url)
            connection.connect()
            publisher = RedisPublisher(connection, s.redis_events_stream, s.redis_stream_max_len)
            self.redis_mirror = RedisMirror(publisher, connection)
            self.redis_mirror.start()
            self.pipeline.add_sink(self.redis_mirror)

        if s.mqtt_enabled:
            self.mqtt = MQTTEventReceiver(
                self.pipeline,
                broker_host=s.mqtt_broker_host,
                broker_port=s.mqtt_broker_port,
                username=s.mqtt_username,
                password=s.mqtt_password,
                events_topic=s.mqtt_events_topic,
                commands_topic=s.mqtt_commands_topic,
            )
            self.mqtt.start()
            self.commands.set_publisher(self.mqtt.publish_command)

    def stop_transports(self) -> None:
        if self.mqtt is not None:
            self.commands.set_publisher(None)
            self.mqtt.stop()
            self.mqtt = None
        if self.redis_mirror is not None:
            self.pipeline.remove_sink(self.redis_mirror)
            self.redis_mirror.stop()
            self.redis_mirror = None

