"""Cuerpos de request de la API REST (los eventos se validan en core.validation)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class CommandIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    parameters: Dict[str, str] = Field(default_factory=dict)
    commandId: Optional[Union[int, str]] = None
    deviceId: Optional[str] = Field(default=None, validation_alias=AliasChoices("deviceId", "device_id"))

    @field_validator("parameters", mode="before")
    @classmethod
    def stringify_parameters(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


class ModelActionIn(BaseModel):
    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("device_id", "deviceId"))


class DeviceRegisterIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=256)
    firmwareVersion: str = Field(default="", max_length=64)
    capabilities: List[str] = Field(default_factory=list)


class IngestAck(BaseModel):
    ok: bool
    id: str
    duplicate: bool = False
    warnings: List[str] = Field(default_factory=list)
