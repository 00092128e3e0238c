"""Catálogo de modelos reportados por los dispositivos + relay de ciclo de vida.

El hub no sirve modelos: solo recuerda lo que los dispositivos
anuncian con MODEL_LOADED y traduce switch/reload en comandos.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..core.domain.event import DetectionEvent, ModelLoadedPayload
from .dispatcher import CommandDispatcher, DispatchResult
from .models import CommandType


@dataclass(frozen=True)
class ModelRecord:
    id: str
    device_id: str
    version: Optional[str]
    loaded_at: datetime
    active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "version": self.version,
            "loadedAt": self.loaded_at.isoformat(),
            "active": self.active,
        }


class ModelCatalog:
    """Sink del pipeline: se invoca con cada evento aceptado."""

    def __init__(self, dispatcher: CommandDispatcher):
        self._dispatcher = dispatcher
        # (device_id, model_id) -> record; dict preserva orden de llegada
        self._records: Dict[Tuple[str, str], ModelRecord] = {}
        self._lock = threading.Lock()

    def __call__(self, event: DetectionEvent) -> None:
        if not isinstance(event.payload, ModelLoadedPayload):
            return
        key = (event.device_id, event.payload.model_id)
        with self._lock:
            # un solo modelo activo por dispositivo
            for k, record in list(self._records.items()):
                if k[0] == event.device_id and record.active:
                    self._records[k] = replace(record, active=False)
            self._records.pop(key, None)
            self._records[key] = ModelRecord(
                id=event.payload.model_id,
                device_id=event.device_id,
                version=event.payload.version,
                loaded_at=event.timestamp,
            )

    def list(self, device_id: Optional[str] = None) -> List[ModelRecord]:
        with self._lock:
            records = list(self._records.values())
        if device_id:
            records = [r for r in records if r.device_id == device_id]
        return records

    def active_for(self, device_id: str) -> Optional[ModelRecord]:
        for record in self.list(device_id):
            if record.active:
                return record
        return None

    def switch(self, model_id: str, device_id: Optional[str] = None) -> DispatchResult:
        return self._dispatcher.dispatch(
            CommandType.CHANGE_MODEL.value,
            {"modelId": model_id},
            device_id=device_id,
        )

    def reload(self, device_id: Optional[str] = None) -> DispatchResult:
        return self._dispatcher.dispatch(CommandType.RELOAD_MODEL.value, {}, device_id=device_id)
