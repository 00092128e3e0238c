"""Event hub: ingesta, fan-out y agregación de eventos de dispositivos edge."""

__version__ = "0.1.0"
