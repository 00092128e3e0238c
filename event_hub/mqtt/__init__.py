"""Transporte MQTT - ingesta de eventos y publicación de comandos."""

from .receiver import MQTTEventReceiver, device_id_from_topic

__all__ = ["MQTTEventReceiver", "device_id_from_topic"]
