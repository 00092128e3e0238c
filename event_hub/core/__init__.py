"""Core layer - estado en memoria, sin dependencias de transporte."""
