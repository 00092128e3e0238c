"""Canal de comandos hacia dispositivos.

Dos modos, según haya broker MQTT:
- push: el comando se publica en edge/{device_id}/commands.
- pull: el comando queda en la cola acotada del dispositivo y este la
  drena con GET /devices/{id}/commands.

El core solo acepta, valida y encola. Si el canal no está disponible
(broker caído, cola llena) se lanza TransientIOError y el llamador
decide si reintenta.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from ..core.clock import Clock, utcnow
from ..core.domain.device import ConnectionStatus
from ..core.registry.device_registry import DeviceRegistry
from ..errors import TransientIOError, ValidationError
from ..fanout.backpressure import BackpressureQueue
from ..fanout.backpressure_config import BackpressureConfig
from ..metrics import prometheus as prom
from .models import Command, CommandType

logger = logging.getLogger(__name__)

# (device_id, comando serializado) -> True si el broker aceptó el publish
CommandPublisher = Callable[[str, dict], bool]


@dataclass
class DispatchResult:
    command_id: str
    type: CommandType
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.delivered)

    def to_dict(self) -> dict:
        targets = ", ".join(self.delivered) or "no devices"
        message = f"{self.type.value} sent to {targets}"
        if self.failed:
            message += f" (failed: {', '.join(self.failed)})"
        return {
            "success": self.success,
            "message": message,
            "commandId": self.command_id,
            "delivered": list(self.delivered),
            "failed": list(self.failed),
        }


class CommandDispatcher:
    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        queue_max_size: int = 64,
        publisher: Optional[CommandPublisher] = None,
        clock: Clock = utcnow,
    ):
        self._registry = registry
        self._queue_max_size = queue_max_size
        self._publisher = publisher
        self._clock = clock
        self._queues: Dict[str, BackpressureQueue[Command]] = {}
        self._lock = threading.Lock()

    @property
    def mode(self) -> str:
        return "push" if self._publisher is not None else "pull"

    def set_publisher(self, publisher: Optional[CommandPublisher]) -> None:
        self._publisher = publisher

    def dispatch(
        self,
        command_type: str,
        parameters: Optional[Mapping[str, str]] = None,
        *,
        command_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> DispatchResult:
        """Envía un comando a un dispositivo o, sin device_id, a todos los no-offline.

        Raises:
            ValidationError: tipo de comando desconocido
            NotFoundError: device_id no registrado
            TransientIOError: ningún dispositivo destino pudo recibirlo
        """
        try:
            ctype = CommandType(str(command_type).strip().upper())
        except ValueError:
            allowed = ", ".join(t.value for t in CommandType)
            raise ValidationError(
                f"Unknown command type '{command_type}'",
                details={"type": [f"must be one of {allowed}"]},
            ) from None

        if device_id:
            targets = [self._registry.get(device_id).id]
        else:
            targets = [
                d.id for d in self._registry.list() if d.status != ConnectionStatus.OFFLINE
            ]
            if not targets:
                prom.COMMANDS_DISPATCHED.labels(type=ctype.value, outcome="rejected").inc()
                raise TransientIOError("No reachable devices for command")

        result = DispatchResult(command_id=command_id or uuid.uuid4().hex, type=ctype)
        issued_at = self._clock()
        for target in targets:
            command = Command(
                command_id=result.command_id,
                type=ctype,
                device_id=target,
                issued_at=issued_at,
                parameters={str(k): str(v) for k, v in (parameters or {}).items()},
            )
            if self._deliver(command):
                result.delivered.append(target)
            else:
                result.failed.append(target)

        if not result.delivered:
            raise TransientIOError(
                f"Command channel unavailable for {', '.join(result.failed)}",
                details={"deviceId": result.failed},
            )
        logger.info(
            "[COMMANDS] %s id=%s mode=%s delivered=%s failed=%s",
            ctype.value, result.command_id, self.mode, result.delivered, result.failed,
        )
        return result

    def _deliver(self, command: Command) -> bool:
        if self._publisher is not None:
            try:
                ok = self._publisher(command.device_id, command.to_dict())
            except Exception as e:
                logger.error("[COMMANDS] Publish failed device=%s: %s", command.device_id, e)
                ok = False
            prom.COMMANDS_DISPATCHED.labels(
                type=command.type.value, outcome="published" if ok else "publish_failed"
            ).inc()
            return ok

        accepted = self._queue_for(command.device_id).put(command)
        prom.COMMANDS_DISPATCHED.labels(
            type=command.type.value, outcome="queued" if accepted else "rejected"
        ).inc()
        if not accepted:
            logger.warning("[COMMANDS] Queue full for device=%s, rejected %s", command.device_id, command.type.value)
        return accepted

    def _queue_for(self, device_id: str) -> BackpressureQueue[Command]:
        with self._lock:
            queue = self._queues.get(device_id)
            if queue is None:
                # drop-newest: un comando nunca desplaza a otro ya aceptado
                queue = BackpressureQueue(
                    BackpressureConfig(max_queue_size=self._queue_max_size, drop_oldest=False)
                )
                self._queues[device_id] = queue
            return queue

    def drain(self, device_id: str, max_items: Optional[int] = None) -> List[Command]:
        """Comandos pendientes del dispositivo, en orden de emisión."""
        self._registry.get(device_id)
        with self._lock:
            queue = self._queues.get(device_id)
        if queue is None:
            return []
        return queue.drain(max_items)

    def pending(self, device_id: str) -> int:
        with self._lock:
            queue = self._queues.get(device_id)
        return queue.size if queue is not None else 0
