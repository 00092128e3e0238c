"""Pipeline layer - ingesta de eventos."""

from .ingestion import EventSink, IngestionPipeline, IngestResult

__all__ = ["EventSink", "IngestionPipeline", "IngestResult"]
