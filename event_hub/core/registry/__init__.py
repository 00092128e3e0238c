from .device_registry import DeviceListener, DeviceRegistry, LivenessPolicy

__all__ = ["DeviceListener", "DeviceRegistry", "LivenessPolicy"]
